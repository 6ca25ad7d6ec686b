import json

import pytest

from grafana_reconcile.dashboard_client import (
    DashboardClientError,
    DashboardLookup,
    DashboardResponse,
    FolderResponse,
)
from grafana_reconcile.dashboard_pipeline import Dashboard
from grafana_reconcile.dashboard_sync import (
    DashboardRef,
    DashboardRegistry,
    DashboardSynchronizer,
    find_hash,
    find_uid,
    in_namespace,
)

DASHBOARD = Dashboard(name="dashboard2", namespace="grafana", url="url1")

KNOWN_DASHBOARDS_EMPTY = [DashboardRef(name="dashboard1"), DashboardRef(name="dashboard2")]

KNOWN_DASHBOARDS = [
    DashboardRef(name="dashboard1", namespace="grafana", hash="1234", uid="uid1234"),
    DashboardRef(name="dashboard2", namespace="grafana", hash="5678", uid="uid5678"),
]

DASHBOARD_LIST = [
    Dashboard(name="dashboard1", namespace="grafana", url="url1"),
    Dashboard(name="dashboard2", namespace="foo", url="url2"),
]


def test_find_hash_empty():
    assert find_hash(KNOWN_DASHBOARDS_EMPTY, DASHBOARD) == ""


def test_find_hash():
    assert find_hash(KNOWN_DASHBOARDS, DASHBOARD) == "5678"


def test_true_in_namespace():
    assert in_namespace(DASHBOARD_LIST, KNOWN_DASHBOARDS[0]) is True


def test_false_in_namespace():
    assert in_namespace(DASHBOARD_LIST, KNOWN_DASHBOARDS[1]) is False


def test_find_uid_empty():
    assert find_uid(KNOWN_DASHBOARDS_EMPTY, DASHBOARD) == ""


def test_find_uid():
    assert find_uid(KNOWN_DASHBOARDS, DASHBOARD) == "uid5678"


class FakeClient:
    def __init__(self, existing=(), folder_error=False, folder_id=7):
        self.existing = set(existing)
        self.folder_error = folder_error
        self.folder_id = folder_id
        self.folders_requested = []
        self.created = []
        self.deleted = []
        self.deleted_folders = []

    def create_or_update_folder(self, folder_name):
        self.folders_requested.append(folder_name)
        if self.folder_error:
            raise DashboardClientError("folder failure")
        return FolderResponse(id=self.folder_id, title=folder_name)

    def get_dashboard(self, uid):
        if uid in self.existing:
            return DashboardLookup(id=1, uid=uid)
        return DashboardLookup()

    def create_or_update_dashboard(self, dashboard, folder_id, folder_name):
        self.created.append((json.loads(dashboard), folder_id, folder_name))
        return DashboardResponse()

    def delete_dashboard_by_uid(self, uid):
        self.deleted.append(uid)
        return DashboardResponse(message="deleted")

    def delete_folder(self, folder_id):
        self.deleted_folders.append(folder_id)

    def safe_to_delete(self, dashboards, folder_id):
        return all(d.folder_id != folder_id for d in dashboards)


def make_dashboard(name="dash", namespace="team", **kwargs):
    kwargs.setdefault("json", '{"title": "%s"}' % name)
    return Dashboard(name=name, namespace=namespace, **kwargs)


def match_all(_dashboard):
    return True


def test_new_dashboard_is_submitted_and_registered():
    registry = DashboardRegistry()
    client = FakeClient()
    dashboard = make_dashboard()
    sync = DashboardSynchronizer(registry, client, match_all)

    sync.sync("team", [dashboard])

    assert len(client.created) == 1
    payload, folder_id, folder_name = client.created[0]
    assert payload["title"] == "dash"
    assert payload["uid"] == dashboard.uid
    assert payload["folderId"] == 7
    assert folder_id == 7
    assert folder_name == "team"
    refs = registry.for_namespace("team")
    assert [(r.name, r.uid, r.folder_id, r.hash) for r in refs] == [
        ("dash", dashboard.uid, 7, dashboard.hash)
    ]
    assert sync.synced is True
    assert sync.errors == {}


def test_unchanged_dashboard_is_not_resubmitted():
    registry = DashboardRegistry()
    dashboard = make_dashboard()
    registry.add(dashboard, 7, "team")
    client = FakeClient(existing={dashboard.uid})

    DashboardSynchronizer(registry, client, match_all).sync("team", [dashboard])

    assert client.created == []


def test_dashboard_deleted_in_grafana_is_recreated():
    registry = DashboardRegistry()
    dashboard = make_dashboard()
    registry.add(dashboard, 7, "team")
    client = FakeClient()

    DashboardSynchronizer(registry, client, match_all).sync("team", [dashboard])

    assert len(client.created) == 1
    assert client.created[0][0]["uid"] == dashboard.uid


def test_non_matching_dashboard_is_skipped():
    client = FakeClient()
    sync = DashboardSynchronizer(DashboardRegistry(), client, lambda d: False)

    sync.sync("team", [make_dashboard()])

    assert client.created == []
    assert client.folders_requested == []


def test_custom_folder_name_is_used():
    client = FakeClient()
    registry = DashboardRegistry()
    dashboard = make_dashboard(custom_folder_name="Custom")

    DashboardSynchronizer(registry, client, match_all).sync("team", [dashboard])

    assert client.folders_requested == ["Custom"]
    assert client.created[0][2] == "Custom"
    assert registry.for_namespace("team")[0].folder_name == "Custom"


def test_folder_failure_is_recorded():
    client = FakeClient(folder_error=True)
    sync = DashboardSynchronizer(DashboardRegistry(), client, match_all)

    sync.sync("team", [make_dashboard()])

    assert client.created == []
    assert str(sync.errors["team/dash"]) == "folder failure"


def test_invalid_json_is_recorded():
    client = FakeClient()
    registry = DashboardRegistry()
    sync = DashboardSynchronizer(registry, client, match_all)

    sync.sync("team", [make_dashboard(json="not json")])

    assert client.created == []
    assert "team/dash" in sync.errors
    assert registry.for_namespace("team") == []


def test_removed_dashboard_is_deleted_with_its_folder():
    registry = DashboardRegistry()
    gone = make_dashboard(name="gone")
    registry.add(gone, 7, "team")
    client = FakeClient()

    DashboardSynchronizer(registry, client, match_all).sync("team", [])

    assert client.deleted == [gone.uid]
    assert client.deleted_folders == [7]
    assert registry.for_namespace("team") == []


def test_shared_folder_is_kept():
    registry = DashboardRegistry()
    gone = make_dashboard(name="gone")
    kept = make_dashboard(name="kept")
    registry.add(gone, 7, "team")
    registry.add(kept, 7, "team")
    client = FakeClient(existing={kept.uid})

    DashboardSynchronizer(registry, client, match_all).sync("team", [kept])

    assert client.deleted == [gone.uid]
    assert client.deleted_folders == []
    assert [r.name for r in registry.for_namespace("team")] == ["kept"]


def test_custom_folder_is_not_deleted():
    registry = DashboardRegistry()
    gone = make_dashboard(name="gone")
    registry.add(gone, 9, "Custom")
    client = FakeClient()

    DashboardSynchronizer(registry, client, match_all).sync("team", [])

    assert client.deleted == [gone.uid]
    assert client.deleted_folders == []


def test_registry_add_replaces_entry():
    registry = DashboardRegistry()
    first = make_dashboard(json='{"a": 1}')
    second = make_dashboard(json='{"a": 2}')
    registry.add(first, 1, "team")
    registry.add(second, 2, "team")

    refs = registry.for_namespace("team")
    assert len(refs) == 1
    assert refs[0].hash == second.hash
    assert refs[0].folder_id == 2


def test_registry_remove_and_namespaces():
    registry = DashboardRegistry()
    a = make_dashboard(name="a", namespace="one")
    b = make_dashboard(name="b", namespace="two")
    registry.add(a, 1, "one")
    registry.add(b, 2, "two")

    assert [r.name for r in registry.for_namespace("")] == ["a", "b"]
    assert [r.name for r in registry.for_namespace("two")] == ["b"]

    registry.remove(a.uid)
    assert [r.name for r in registry.for_namespace("")] == ["b"]


@pytest.mark.parametrize("namespace", ["team", ""])
def test_sync_marks_synced(namespace):
    sync = DashboardSynchronizer(DashboardRegistry(), FakeClient(), match_all)
    assert sync.synced is False
    sync.sync(namespace, [])
    assert sync.synced is True