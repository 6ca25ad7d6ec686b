"""HTTP client for the Grafana dashboard and folder API."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable

import requests

DASHBOARD_BY_UID_URL = "{}/api/dashboards/uid/{}"
CREATE_OR_UPDATE_DASHBOARD_URL = "{}/api/dashboards/db"
FOLDERS_URL = "{}/api/folders"
FOLDER_BY_UID_URL = "{}/api/folders/{}"
FOLDER_BY_ID_URL = "{}/api/folders/id/{}"

NON_NAMESPACED_FOLDER_NAME = "Non-Namespaced"

_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "User-Agent": "grafana-operator",
}

logger = logging.getLogger(__name__)


class DashboardClientError(Exception):
    """Raised when a request to the dashboard or folder API fails."""


@dataclass(frozen=True)
class DashboardResponse:
    """Result of submitting or deleting a dashboard."""

    id: int | None = 0
    org_id: int | None = 0
    message: str | None = "(empty)"
    slug: str | None = ""
    version: int | None = 0
    status: str | None = "(empty)"
    uid: str | None = ""
    url: str | None = ""
    folder_id: int | None = None
    folder_name: str | None = ""


_RESPONSE_FIELDS = {
    "id": "id",
    "orgid": "org_id",
    "message": "message",
    "slug": "slug",
    "version": "version",
    "resp": "status",
    "uid": "uid",
    "url": "url",
    "folderid": "folder_id",
    "foldername": "folder_name",
}


@dataclass(frozen=True)
class FolderResponse:
    """A Grafana dashboard folder."""

    id: int | None = 0
    title: str = ""
    uid: str = ""


_FOLDER_FIELDS = {"id": "id", "title": "title", "uid": "uid"}


@dataclass(frozen=True)
class DashboardLookup:
    """A dashboard as found in Grafana, with the metadata of its folder."""

    id: int | None = 0
    uid: str | None = ""
    title: str | None = ""
    version: int | None = 0
    folder_id: int | None = None
    folder_title: str | None = None
    meta_version: int | None = None

    @property
    def exists(self) -> bool:
        """Whether Grafana reported the dashboard."""
        return bool(self.id)


_LOOKUP_DASHBOARD_FIELDS = {"id": "id", "uid": "uid", "title": "title", "version": "version"}
_LOOKUP_META_FIELDS = {
    "folderid": "folder_id",
    "foldertitle": "folder_title",
    "version": "meta_version",
}


def _fields(payload: Any, mapping: dict[str, str]) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    return {
        mapping[key.lower()]: value
        for key, value in payload.items()
        if key.lower() in mapping
    }


def _decode(content: bytes) -> Any:
    try:
        return json.loads(content)
    except ValueError as exc:
        raise DashboardClientError(f"invalid response body: {exc}") from exc


def _require_object(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise DashboardClientError("expected a JSON object in the response body")
    return payload


def _folder_from(payload: Any, base: FolderResponse) -> FolderResponse:
    return dataclasses.replace(base, **_fields(_require_object(payload), _FOLDER_FIELDS))


class DashboardClient:
    """Manages dashboards and folders through the Grafana HTTP API."""

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

    def get_dashboard(self, uid: str) -> DashboardLookup:
        """Look a dashboard up by uid; an unknown uid gives an empty lookup."""
        with self._send("GET", DASHBOARD_BY_UID_URL.format(self.url, uid)) as resp:
            if resp.status_code == 404:
                return DashboardLookup()
            if resp.status_code != 200:
                raise DashboardClientError(
                    "error searching for dashboard, expected status 200 "
                    f"but got {resp.status_code}"
                )
            payload = _require_object(_decode(resp.content))
        changes = {
            **_fields(payload.get("dashboard"), _LOOKUP_DASHBOARD_FIELDS),
            **_fields(payload.get("meta"), _LOOKUP_META_FIELDS),
        }
        return dataclasses.replace(DashboardLookup(), **changes)

    def create_or_update_folder(self, folder_name: str) -> FolderResponse:
        """Return the folder with this title, creating it when missing."""
        for folder in self._all_folders():
            if folder.title == folder_name:
                return folder

        title = folder_name or NON_NAMESPACED_FOLDER_NAME
        body = json.dumps({"title": title}).encode("utf-8")
        with self._send("POST", FOLDERS_URL.format(self.url), body) as resp:
            if resp.status_code == 503:
                return FolderResponse(id=None)
            if resp.status_code != 200:
                raise DashboardClientError(
                    "error creating folder, expected status 200 "
                    f"but got {resp.status_code}"
                )
            payload = _decode(resp.content)
        return _folder_from(payload, FolderResponse())

    def create_or_update_dashboard(
        self, dashboard: bytes | str, folder_id: int, folder_name: str
    ) -> DashboardResponse:
        """Submit dashboard JSON, always overwriting the stored version."""
        raw = dashboard.decode("utf-8") if isinstance(dashboard, bytes) else dashboard
        raw = raw.strip() or "null"
        try:
            json.loads(raw)
        except ValueError as exc:
            raise DashboardClientError(f"invalid dashboard json: {exc}") from exc

        body = (
            '{"dashboard":' + raw
            + ',"folderId":' + json.dumps(folder_id)
            + ',"folderName":' + json.dumps(folder_name)
            + ',"overwrite":true}'
        ).encode("utf-8")

        with self._send("POST", CREATE_OR_UPDATE_DASHBOARD_URL.format(self.url), body) as resp:
            if resp.status_code not in (200, 503):
                raise DashboardClientError(
                    "error creating dashboard, expected status 200 "
                    f"but got {resp.status_code}"
                )
            payload = _decode(resp.content)
        return self._response_from(payload)

    def delete_dashboard_by_uid(self, uid: str) -> DashboardResponse:
        """Delete the dashboard with the given uid."""
        with self._send("DELETE", DASHBOARD_BY_UID_URL.format(self.url, uid)) as resp:
            if resp.status_code != 200:
                raise DashboardClientError(
                    "error deleting dashboard, expected status 200 "
                    f"but got {resp.status_code}"
                )
            payload = _decode(resp.content)
        return self._response_from(payload)

    def delete_folder(self, folder_id: int) -> None:
        """Delete the folder with the given numeric id."""
        folder_uid = self._folder_uid(folder_id)
        with self._send("DELETE", FOLDER_BY_UID_URL.format(self.url, folder_uid)) as resp:
            if resp.status_code != 200:
                raise DashboardClientError(
                    "error deleting folder, expected status 200 "
                    f"but got {resp.status_code}"
                )
            payload = _decode(resp.content)
        result = self._response_from(payload)
        logger.info("delete result was %s", result.message)

    def safe_to_delete(self, dashboards: Iterable[Any], folder_id: int) -> bool:
        """Whether no known dashboard lives in the given folder."""
        return all(dashboard.folder_id != folder_id for dashboard in dashboards)

    def _all_folders(self) -> list[FolderResponse]:
        with self._send("GET", FOLDERS_URL.format(self.url)) as resp:
            if resp.status_code == 503:
                # Grafana may be temporarily unavailable; other checks cover it.
                return []
            if resp.status_code != 200:
                raise DashboardClientError(
                    "error getting folders, expected status 200 "
                    f"but got {resp.status_code}"
                )
            payload = _decode(resp.content)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise DashboardClientError("expected a JSON array of folders")
        return [_folder_from(item, FolderResponse(id=None)) for item in payload]

    def _folder_uid(self, folder_id: int) -> str:
        with self._send("GET", FOLDER_BY_ID_URL.format(self.url, folder_id)) as resp:
            if resp.status_code != 200:
                raise DashboardClientError(
                    f"error finding folder {folder_id}, expected status 200 "
                    f"but got {resp.status_code}"
                )
            payload = _decode(resp.content)
        return _folder_from(payload, FolderResponse()).uid

    @staticmethod
    def _response_from(payload: Any) -> DashboardResponse:
        return dataclasses.replace(
            DashboardResponse(), **_fields(_require_object(payload), _RESPONSE_FIELDS)
        )

    def _send(self, method: str, url: str, body: bytes | None = None) -> requests.Response:
        try:
            return self.session.request(
                method,
                url,
                data=body,
                headers=_HEADERS,
                auth=(self.user, self.password),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DashboardClientError(str(exc)) from exc