import pytest

from conftest import computer, mobile, plan
from plansync.core.attributes import (
    ERROR,
    SKIPPED,
    UPDATED,
    AnnotationDefinition,
    AttributeSynchronizer,
    JamfAnnotationStore,
    resolve_definitions,
)
from plansync.core.errors import AnnotationWriteError, MissingAnnotationDefinition, PlanSyncError, TransportError
from plansync.core.jamf_client import JamfClient
from plansync.core.plans import ANNOTATION_NAMES, NO_PLAN, PlanIndex, reconcile
from plansync.core.registry import build_registry
from plansync.core.stats import RunStatistics


class _MemoryStore:
    def __init__(self, names=ANNOTATION_NAMES, fail_ids=(), raises=None):
        self.defs = [AnnotationDefinition(id=str(i + 1), name=n) for i, n in enumerate(names)]
        self.fail_ids = set(fail_ids)
        self.raises = raises
        self.created = []
        self.writes = []

    def list_definitions(self):
        return list(self.defs)

    def create_definition(self, name, description):
        d = AnnotationDefinition(id=str(50 + len(self.created)), name=name, description=description)
        self.created.append(d)
        self.defs.append(d)
        return d

    def write_values(self, identity, values):
        if identity in self.fail_ids:
            if self.raises is not None:
                raise self.raises(identity)
            raise TransportError(status=500, url=f"/detail/{identity}", message="boom")
        self.writes.append((identity, dict(values)))


def _scenario():
    registry = build_registry([computer("A"), computer("B")], [mobile("C")])
    statuses = reconcile(registry, PlanIndex.build([plan("A")]), RunStatistics())
    return registry, statuses


def test_resolve_existing_definitions():
    store = _MemoryStore()
    stats = RunStatistics()
    defs = resolve_definitions(store, allow_create=False, stats=stats)
    assert [defs[n].id for n in ANNOTATION_NAMES] == ["1", "2", "3", "4", "5"]
    assert stats.definitions_created == 0


def test_resolve_creates_missing_when_allowed():
    store = _MemoryStore(names=("Plan_Status", "Something_Else"))
    stats = RunStatistics()
    defs = resolve_definitions(store, allow_create=True, stats=stats)
    assert set(defs) == set(ANNOTATION_NAMES)
    assert defs["Plan_Status"].id == "1"
    assert [d.name for d in store.created] == list(ANNOTATION_NAMES[1:])
    assert stats.definitions_created == 4


def test_resolve_missing_not_allowed_lists_all_missing():
    store = _MemoryStore(names=("Plan_Status", "Plan_Action"))
    with pytest.raises(MissingAnnotationDefinition) as ei:
        resolve_definitions(store, allow_create=False, stats=RunStatistics())
    assert ei.value.missing == ["Plan_Version_Type", "Plan_Error_Reasons", "Plan_Force_Install_Date"]
    assert store.created == []
    assert store.writes == []


def test_sync_scenario_updates_full_devices_and_skips_limited():
    registry, statuses = _scenario()
    store = _MemoryStore()
    defs = resolve_definitions(store, allow_create=False, stats=RunStatistics())
    sync = AttributeSynchronizer(store, defs, delay_sec=0)

    report = sync.sync(registry, statuses)

    assert report.updated == 2
    assert report.skipped == 1
    assert report.errors == 0
    assert sorted(i for i, _ in store.writes) == ["A", "B"]
    written = dict(store.writes)
    assert written["A"]["1"] == "PlanCompleted"
    assert written["A"]["4"] == "No Errors"
    assert set(written["B"].values()) == {NO_PLAN}
    assert {r.identity: r.outcome for r in report.results}["C"] == SKIPPED


def test_write_failure_is_isolated():
    registry = build_registry([computer("1"), computer("2"), computer("3")], [])
    statuses = reconcile(registry, PlanIndex.build([]), RunStatistics())
    store = _MemoryStore(fail_ids={"2"})
    sync = AttributeSynchronizer(store, resolve_definitions(store, allow_create=False, stats=RunStatistics()),
                                 delay_sec=0)

    report = sync.sync(registry, statuses)

    assert [r.outcome for r in report.results] == [UPDATED, ERROR, UPDATED]
    failure = report.failures()[0]
    assert failure.identity == "2"
    assert "boom" in str(failure.error)

    stats = RunStatistics()
    report.apply_to(stats)
    assert (stats.devices_updated, stats.devices_skipped, stats.errors) == (2, 0, 1)


def test_delay_between_writes_only():
    registry = build_registry([computer("1"), computer("2"), computer("3")], [mobile("9")])
    statuses = reconcile(registry, PlanIndex.build([]), RunStatistics())
    store = _MemoryStore()
    sleeps = []
    sync = AttributeSynchronizer(store, resolve_definitions(store, allow_create=False, stats=RunStatistics()),
                                 delay_sec=0.25, sleep=sleeps.append)
    sync.sync(registry, statuses)
    assert sleeps == [0.25, 0.25]


def test_synchronizer_requires_all_definitions():
    with pytest.raises(MissingAnnotationDefinition):
        AttributeSynchronizer(_MemoryStore(), {"Plan_Status": AnnotationDefinition("1", "Plan_Status")})


def test_jamf_store_over_http(jamf_server):
    base_url, state = jamf_server
    state["eas"] = [{"id": "3", "name": "Plan_Status", "description": ""}]
    client = JamfClient(base_url, "ID", "SECRET", timeout_sec=2)
    store = JamfAnnotationStore(client, page_size=50)
    stats = RunStatistics()

    defs = resolve_definitions(store, allow_create=True, stats=stats)
    store.write_values("11", {defs["Plan_Status"].id: "PlanCompleted"})

    assert stats.definitions_created == 4
    assert [c["name"] for c in state["created_eas"]] == list(ANNOTATION_NAMES[1:])
    assert state["created_eas"][0]["dataType"] == "STRING"
    assert state["patches"] == [
        ("11", {"extensionAttributes": [{"definitionId": "3", "values": ["PlanCompleted"]}]})
    ]


def test_store_reported_write_error_is_kept_and_batch_continues():
    registry = build_registry([computer("1"), computer("2"), computer("3")], [])
    statuses = reconcile(registry, PlanIndex.build([]), RunStatistics())
    store = _MemoryStore(fail_ids={"1"},
                         raises=lambda identity: AnnotationWriteError(identity=identity, cause="locked"))
    sync = AttributeSynchronizer(store, resolve_definitions(store, allow_create=False, stats=RunStatistics()),
                                 delay_sec=0)

    report = sync.sync(registry, statuses)

    assert [r.outcome for r in report.results] == [ERROR, UPDATED, UPDATED]
    err = report.failures()[0].error
    assert isinstance(err, AnnotationWriteError)
    assert (err.identity, err.cause) == ("1", "locked")


def test_any_plansync_error_on_write_is_isolated():
    registry = build_registry([computer("1"), computer("2")], [])
    statuses = reconcile(registry, PlanIndex.build([]), RunStatistics())
    store = _MemoryStore(fail_ids={"2"}, raises=lambda identity: PlanSyncError("read-only store"))
    sync = AttributeSynchronizer(store, resolve_definitions(store, allow_create=False, stats=RunStatistics()),
                                 delay_sec=0)

    report = sync.sync(registry, statuses)

    assert (report.updated, report.errors) == (1, 1)
    assert "read-only store" in report.failures()[0].error.cause
