import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest


class _JamfHandler(BaseHTTPRequestHandler):
    """In-process fake of the Jamf Pro endpoints PlanSync talks to."""

    state: dict = {}

    protocol_version = "HTTP/1.1"

    @classmethod
    def reset(cls):
        cls.state = {
            "token_expires_in": 1200,
            "tokens_issued": 0,
            "revoked": set(),
            "computers": [],
            "mobiles": [],
            "plans": [],
            "toggle": True,
            "toggle_status": 200,
            "plans_status": 200,
            "computers_status": 200,
            "eas": [],
            "created_eas": [],
            "patches": [],
            "fail_patch_ids": set(),
            "calls": {},
            "pages": [],
        }

    # ---- helpers ----
    def _send_json(self, status, obj):
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _body(self):
        length = int(self.headers.get("Content-Length", "0"))
        return self.rfile.read(length) if length else b""

    def _count(self, path):
        calls = _JamfHandler.state["calls"]
        calls[path] = calls.get(path, 0) + 1

    def _auth_ok(self):
        auth = self.headers.get("Authorization", "")
        if not auth.startswith("Bearer tok-"):
            return False
        return auth[len("Bearer "):] not in _JamfHandler.state["revoked"]

    def _page(self, items, query):
        page = int(query.get("page", ["0"])[0])
        size = int(query.get("page-size", ["100"])[0])
        _JamfHandler.state["pages"].append((urlparse(self.path).path, page, size, query.get("section", [])))
        return {"totalCount": len(items), "results": items[page * size:(page + 1) * size]}

    # ---- verbs ----
    def do_POST(self):  # noqa: N802
        path = urlparse(self.path).path
        self._count(path)
        body = self._body()
        st = _JamfHandler.state
        if path == "/api/oauth/token":
            form = parse_qs(body.decode("utf-8"))
            if form.get("client_id") != ["ID"] or form.get("client_secret") != ["SECRET"]:
                self._send_json(401, {"error": "invalid_client"})
                return
            st["tokens_issued"] += 1
            self._send_json(200, {
                "access_token": f"tok-{st['tokens_issued']}",
                "expires_in": st["token_expires_in"],
                "token_type": "Bearer",
            })
            return
        if not self._auth_ok():
            self._send_json(401, {"error": "unauthorized"})
            return
        if path == "/api/v1/computer-extension-attributes":
            data = json.loads(body.decode("utf-8"))
            new_id = str(100 + len(st["eas"]))
            st["eas"].append({"id": new_id, "name": data["name"], "description": data.get("description", "")})
            st["created_eas"].append(data)
            self._send_json(201, {"id": new_id, "href": f"/api/v1/computer-extension-attributes/{new_id}"})
            return
        self._send_json(404, {"error": "not found"})

    def do_PATCH(self):  # noqa: N802
        path = urlparse(self.path).path
        self._count(path)
        body = self._body()
        if not self._auth_ok():
            self._send_json(401, {"error": "unauthorized"})
            return
        prefix = "/api/v1/computers-inventory-detail/"
        if path.startswith(prefix):
            device_id = path[len(prefix):]
            if device_id in _JamfHandler.state["fail_patch_ids"]:
                self._send_json(500, {"error": "boom"})
                return
            _JamfHandler.state["patches"].append((device_id, json.loads(body.decode("utf-8"))))
            self._send_json(200, {"id": device_id})
            return
        self._send_json(404, {"error": "not found"})

    def do_GET(self):  # noqa: N802
        parsed = urlparse(self.path)
        path, query = parsed.path, parse_qs(parsed.query)
        self._count(path)
        st = _JamfHandler.state
        if not self._auth_ok():
            self._send_json(401, {"error": "unauthorized"})
            return
        if path == "/api/v1/computers-inventory":
            if st["computers_status"] != 200:
                self._send_json(st["computers_status"], {"error": "boom"})
                return
            self._send_json(200, self._page(st["computers"], query))
        elif path == "/api/v2/mobile-devices/detail":
            self._send_json(200, self._page(st["mobiles"], query))
        elif path == "/api/v1/managed-software-updates/plans/feature-toggle":
            if st["toggle_status"] != 200:
                self._send_json(st["toggle_status"], {"error": "toggle"})
                return
            self._send_json(200, {"toggle": st["toggle"]})
        elif path == "/api/v1/managed-software-updates/plans":
            if st["plans_status"] != 200:
                self._send_json(st["plans_status"], {"httpStatus": st["plans_status"], "errors": []})
                return
            self._send_json(200, self._page(st["plans"], query))
        elif path == "/api/v1/computer-extension-attributes":
            self._send_json(200, self._page(st["eas"], query))
        else:
            self._send_json(404, {"error": "not found"})

    def log_message(self, fmt, *args):  # silence test server logs
        return


@pytest.fixture()
def jamf_server():
    _JamfHandler.reset()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _JamfHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    base_url = f"http://{server.server_address[0]}:{server.server_address[1]}"
    try:
        yield base_url, _JamfHandler.state
    finally:
        server.shutdown()
        thread.join(timeout=1.0)


def computer(cid, name="Mac", serial="C02XYZ"):
    return {
        "id": cid,
        "general": {"name": name, "lastContactTime": "2026-10-01T08:00:00Z"},
        "hardware": {"serialNumber": serial, "model": "MacBook Pro"},
        "operatingSystem": {"version": "15.1"},
        "userAndLocation": {"username": "jdoe", "realname": "J Doe", "email": "j@example.org", "position": "Dev"},
    }


def mobile(mid, name="iPad"):
    return {
        "mobileDeviceId": mid,
        "general": {"displayName": name, "osVersion": "18.0"},
        "hardware": {"serialNumber": f"DM{mid}", "model": "iPad Air"},
        "userAndLocation": {"username": "kid", "realName": "K Id", "emailAddress": "k@example.org"},
    }


def plan(device_id, state="PlanCompleted", action="DOWNLOAD_INSTALL_RESTART", reasons=None, force=None):
    return {
        "planUuid": f"uuid-{device_id}",
        "device": {"deviceId": device_id, "objectType": "COMPUTER"},
        "updateAction": action,
        "versionType": "LATEST_MAJOR",
        "specificVersion": "NO_SPECIFIC_VERSION",
        "maxDeferrals": 3,
        "forceInstallLocalDateTime": force,
        "status": {"state": state, "errorReasons": reasons or []},
    }
