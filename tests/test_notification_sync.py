import json

import pytest

from grafana_reconcile.notification_client import GrafanaResponse, NotificationClientError
from grafana_reconcile.notification_pipeline import (
    NotificationChannel,
    NotificationChannelPipeline,
    NotificationPipelineError,
)
from grafana_reconcile.notification_sync import ChannelRef, NotificationChannelSynchronizer


class FakeClient:
    def __init__(self, existing=(), fail_submit=False):
        self.existing = set(existing)
        self.fail_submit = fail_submit
        self.calls = []

    def get_notification_channel(self, uid):
        self.calls.append(("get", uid))
        if uid not in self.existing:
            raise NotificationClientError("not found")
        return GrafanaResponse(uid=uid, id=1)

    def create_notification_channel(self, channel):
        uid = json.loads(channel)["uid"]
        self.calls.append(("create", uid))
        if self.fail_submit:
            raise NotificationClientError("boom")
        self.existing.add(uid)
        return GrafanaResponse(uid=uid, id=7)

    def update_notification_channel(self, channel, uid):
        self.calls.append(("update", uid))
        if self.fail_submit:
            raise NotificationClientError("boom")
        return GrafanaResponse(uid=uid, id=7)

    def delete_notification_channel_by_uid(self, uid):
        self.calls.append(("delete", uid))
        self.existing.discard(uid)
        return GrafanaResponse(uid=uid, message="Notification deleted")


def channel(name, uid="PD-alert-notification", namespace="grafana"):
    return NotificationChannel(
        name=name, namespace=namespace, json=json.dumps({"uid": uid, "type": "pagerduty"})
    )


def test_new_channel_is_created_and_remembered():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    pd = channel("pd")
    sync.sync("grafana", [pd])

    assert client.calls == [("get", "PD-alert-notification"), ("create", "PD-alert-notification")]
    expected = NotificationChannelPipeline(pd)
    expected.process("")
    assert sync.known_channels("grafana") == [
        ChannelRef(
            name="pd", namespace="grafana", uid="PD-alert-notification", id=7,
            hash=expected.new_hash(),
        )
    ]
    assert sync.synced is True


def test_existing_channel_is_updated():
    client = FakeClient(existing={"PD-alert-notification"})
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    sync.sync("grafana", [channel("pd")])
    assert ("update", "PD-alert-notification") in client.calls
    assert not any(call[0] == "create" for call in client.calls)


def test_unchanged_channel_is_not_resubmitted():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    sync.sync("grafana", [channel("pd")])
    client.calls.clear()
    sync.sync("grafana", [channel("pd")])
    assert client.calls == []


def test_removed_channel_is_deleted():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    sync.sync("grafana", [channel("pd")])
    client.calls.clear()
    sync.sync("grafana", [])
    assert client.calls == [("delete", "PD-alert-notification")]
    assert sync.known_channels("grafana") == []


def test_non_matching_channel_is_skipped():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: False)
    sync.sync("grafana", [channel("pd")])
    assert client.calls == []
    assert sync.known_channels("") == []


def test_channel_without_json_is_recorded_as_error():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    sync.sync("grafana", [NotificationChannel(name="empty", namespace="grafana")])
    assert isinstance(sync.errors["grafana/empty"], NotificationPipelineError)
    assert sync.synced is True


def test_missing_uid_stops_the_sync():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    no_uid = NotificationChannel(name="x", namespace="grafana", json='{"type": "email"}')
    sync.sync("grafana", [no_uid, channel("pd")])
    assert client.calls == []
    assert sync.synced is False


def test_submit_failure_is_recorded():
    client = FakeClient(fail_submit=True)
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    sync.sync("grafana", [channel("pd")])
    assert isinstance(sync.errors["grafana/pd"], NotificationClientError)
    assert sync.known_channels("grafana") == []


def test_known_channels_filters_by_namespace():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    sync.sync("", [channel("a", uid="u1", namespace="ns1"), channel("b", uid="u2", namespace="ns2")])
    assert [ref.name for ref in sync.known_channels("ns1")] == ["a"]
    assert sorted(ref.name for ref in sync.known_channels("")) == ["a", "b"]


def test_invalid_json_raises():
    client = FakeClient()
    sync = NotificationChannelSynchronizer(client, lambda c: True)
    with pytest.raises(NotificationPipelineError):
        sync.sync("grafana", [NotificationChannel(name="bad", namespace="grafana", json="{")])