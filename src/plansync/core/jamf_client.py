"""
JamfClient: JSON-first HTTP client for the Jamf Pro API.

This module provides the single authenticated request capability used by
the rest of PlanSync:
  * OAuth client-credentials token with expiry, refreshed lazily
  * JSON helpers (`get_json`, `post_json`, `patch_json`)
  * Typed failures: every network or HTTP error is a `TransportError`.
    Whether a failure means "feature switched off" is decided by the
    caller, which knows the endpoint it asked

Requests are not retried, with one exception: an HTTP 401 drops the cached
token and the request is replayed once with a fresh one.

Example:
    client = JamfClient(base_url, client_id, client_secret)
    page = client.get_json("/api/v1/computers-inventory", params={"page": 0, "page-size": 100})
"""
from __future__ import annotations

import json
import logging
import time
import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import requests
import urllib3

from .errors import TransportError

JSON = Union[Dict[str, Any], List[Any]]
Params = Union[Dict[str, Any], Sequence[Tuple[str, Any]], None]

TOKEN_PATH = "/api/oauth/token"
_LOG_PREVIEW = 600


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False)
        else:
            s = str(obj)
        return s[:limit]
    except (TypeError, ValueError):
        return f"<unserializable:{type(obj).__name__}>"


@dataclass
class AccessToken:
    value: str
    expires_at: float

    def is_valid(self, now: float, skew_sec: float) -> bool:
        return bool(self.value) and now < self.expires_at - skew_sec


class JamfClient:
    """Authenticated JSON client for Jamf Pro.

    Args:
        base_url: Jamf Pro URL (e.g. ``https://example.jamfcloud.com``).
        client_id: API client id.
        client_secret: API client secret.
        verify_tls: If False, certificate verification is disabled.
        timeout_sec: Per-request timeout.
        token_skew_sec: Refresh the token this many seconds before expiry.
        logger: Optional logger (adapter) used for request tracing.
        session: Optional pre-built ``requests.Session`` (tests).
        clock: Time source, seconds since epoch.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        *,
        verify_tls: bool = True,
        timeout_sec: float = 30,
        token_skew_sec: float = 30.0,
        logger: Optional[logging.LoggerAdapter] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.token_skew = float(token_skew_sec)
        self.log = logger or logging.getLogger("plansync.http")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "PlanSync/HTTPClient",
        })
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self.token_refreshes = 0

        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    def get_json(self, path: str, params: Params = None) -> JSON:
        return self._request_json("GET", path, params=params)

    def post_json(self, path: str, payload: Dict[str, Any]) -> JSON:
        return self._request_json("POST", path, payload=payload)

    def patch_json(self, path: str, payload: Dict[str, Any]) -> JSON:
        return self._request_json("PATCH", path, payload=payload)

    def invalidate_token(self) -> None:
        self._token = None

    # ------------- Token lifecycle -------------

    def _bearer(self) -> str:
        now = self._clock()
        if self._token is None or not self._token.is_valid(now, self.token_skew):
            self._token = self._fetch_token()
        return self._token.value

    def _fetch_token(self) -> AccessToken:
        url = self._full_url(TOKEN_PATH)
        try:
            resp = self.session.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except requests.RequestException as exc:
            self.log.error("Token request to %s failed: %s", url, exc)
            raise TransportError(status=0, url=url, message=str(exc)) from exc

        if resp.status_code >= 400:
            self.log.error("Token request -> %s", resp.status_code)
            raise TransportError(status=resp.status_code, url=url, body=resp.text[:200],
                                 message="token request rejected")
        try:
            data = resp.json()
            value = str(data["access_token"])
        except (ValueError, KeyError, TypeError) as exc:
            raise TransportError(status=resp.status_code, url=url, message=f"malformed token response: {exc}") from exc

        expires_in = float(data.get("expires_in") or 0)
        self.token_refreshes += 1
        self.log.debug("Access token obtained (expires_in=%ss)", int(expires_in))
        return AccessToken(value=value, expires_at=self._clock() + expires_in)

    # ------------- Internal -------------

    def _full_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: Params = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> JSON:
        url = self._full_url(path)
        for attempt in (1, 2):
            headers = {"Authorization": f"Bearer {self._bearer()}"}
            if payload is not None:
                headers["Content-Type"] = "application/json"
            start = time.time()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout,
                    verify=self.verify_tls,
                )
            except requests.RequestException as exc:
                self.log.warning("%s %s failed: %s", method, path, exc)
                raise TransportError(status=0, url=url, message=str(exc)) from exc

            elapsed = (time.time() - start) * 1000
            if resp.status_code == 401 and attempt == 1:
                self.log.info("%s %s -> 401, refreshing access token", method, path)
                self.invalidate_token()
                continue
            break

        if resp.status_code >= 400:
            body = resp.text or ""
            self.log.warning("%s %s failed (status=%s): %s", method, path, resp.status_code, body[:200])
            raise TransportError(status=resp.status_code, url=url, body=body, message=resp.reason or "")

        self.log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed)
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportError(status=resp.status_code, url=url, body=resp.text[:200],
                                 message=f"invalid JSON: {exc}") from exc
        self.log.debug("%s %s response: %s", method, path, _short_json(data, 200))
        return data
