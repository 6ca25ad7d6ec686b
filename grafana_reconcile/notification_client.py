"""HTTP client for the Grafana alert notification channel API."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from enum import Enum

import requests

CREATE_NOTIFICATION_CHANNEL_URL = "{}/api/alert-notifications/"
NOTIFICATION_CHANNEL_BY_UID_URL = "{}/api/alert-notifications/uid/{}"

_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "User-Agent": "grafana-operator",
}


class NotificationClientError(Exception):
    """Raised when a request to the notification channel API fails."""


class _Operation(Enum):
    CREATE = ("creating", "POST")
    READ = ("reading", "GET")
    UPDATE = ("updating", "PUT")
    DELETE = ("deleting", "DELETE")

    def __init__(self, verb: str, method: str) -> None:
        self.verb = verb
        self.method = method


@dataclass(frozen=True)
class GrafanaResponse:
    """A notification channel as reported by Grafana."""

    id: int | None = None
    uid: str | None = None
    name: str | None = None
    type: str | None = None
    is_default: bool | None = None
    send_reminder: bool | None = None
    disable_resolve_message: bool | None = None
    created: str | None = None
    updated: str | None = None
    message: str | None = None

    @classmethod
    def empty(cls) -> GrafanaResponse:
        """The response used before anything has been read from Grafana."""
        return cls(
            id=0,
            uid="",
            name="(empty)",
            type="",
            is_default=False,
            send_reminder=False,
            disable_resolve_message=False,
            created="",
            updated="",
            message="(empty)",
        )


_JSON_FIELDS = {
    "id": "id",
    "uid": "uid",
    "name": "name",
    "type": "type",
    "isdefault": "is_default",
    "sendreminder": "send_reminder",
    "disableresolvemessage": "disable_resolve_message",
    "created": "created",
    "updated": "updated",
    "message": "message",
}


def _merge(response: GrafanaResponse, payload: object) -> GrafanaResponse:
    """Overlay the fields present in a JSON object onto a response."""
    if not isinstance(payload, dict):
        raise NotificationClientError("expected a JSON object in the response body")
    changes = {
        _JSON_FIELDS[key.lower()]: value
        for key, value in payload.items()
        if key.lower() in _JSON_FIELDS
    }
    return dataclasses.replace(response, **changes)


class NotificationChannelClient:
    """Creates, reads, updates and deletes Grafana notification channels."""

    def __init__(
        self,
        url: str,
        user: str,
        password: str,
        timeout: float = 0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.user = user
        self.password = password
        self.timeout = timeout or None
        self.session = session if session is not None else requests.Session()

    def create_notification_channel(self, channel: bytes | str) -> GrafanaResponse:
        """Submit a channel definition to Grafana."""
        return self._request(_Operation.CREATE, channel, "")

    def update_notification_channel(self, channel: bytes | str, uid: str) -> GrafanaResponse:
        """Replace the channel with the given uid."""
        return self._request(_Operation.UPDATE, channel, uid)

    def get_notification_channel(self, uid: str) -> GrafanaResponse:
        """Fetch the channel with the given uid."""
        return self._request(_Operation.READ, None, uid)

    def delete_notification_channel_by_uid(self, uid: str) -> GrafanaResponse:
        """Delete the channel with the given uid."""
        return self._request(_Operation.DELETE, None, uid)

    def _request(
        self, operation: _Operation, channel: bytes | str | None, uid: str
    ) -> GrafanaResponse:
        if operation is _Operation.CREATE:
            url = CREATE_NOTIFICATION_CHANNEL_URL.format(self.url)
        else:
            url = NOTIFICATION_CHANNEL_BY_UID_URL.format(self.url, uid)
        body = channel if operation in (_Operation.CREATE, _Operation.UPDATE) else None
        if isinstance(body, str):
            body = body.encode("utf-8")

        try:
            resp = self.session.request(
                operation.method,
                url,
                data=body,
                headers=_HEADERS,
                auth=(self.user, self.password),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotificationClientError(str(exc)) from exc

        with resp:
            if resp.status_code != 200:
                raise NotificationClientError(
                    f"error {operation.verb} notificationChannel, "
                    f"expected status 200 but got {resp.status_code}"
                )
            try:
                payload = json.loads(resp.content)
            except ValueError as exc:
                raise NotificationClientError(f"invalid response body: {exc}") from exc
        return _merge(GrafanaResponse.empty(), payload)