"""Fetching, resolving and preparing dashboard definitions for Grafana."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable
from urllib.parse import urlparse

import requests

GRAFANA_COM_DASHBOARD_API_URL_ROOT = "https://grafana.com/api/dashboards"

_MAX_INTEGRAL_FLOAT = 1e21

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

logger = logging.getLogger(__name__)

ConfigMapReader = Callable[[str, str, str], str]
JsonnetEvaluator = Callable[[str, str], str]


class DashboardPipelineError(Exception):
    """Raised when a dashboard definition cannot be obtained or processed."""


class SourceType(Enum):
    """Kind of document a remote dashboard file holds."""

    JSON = 1
    JSONNET = 2
    UNKNOWN = 3


@dataclass(frozen=True)
class GrafanaComSource:
    """A dashboard published on grafana.com, optionally pinned to a revision."""

    id: int
    revision: int | None = None


@dataclass(frozen=True)
class DatasourceInput:
    """Maps a dashboard input placeholder to a datasource name."""

    input_name: str
    datasource_name: str


@dataclass
class Dashboard:
    """A dashboard resource and the sources its definition may come from."""

    name: str
    namespace: str = ""
    json: str = ""
    jsonnet: str = ""
    url: str = ""
    grafana_com: GrafanaComSource | None = None
    config_map_name: str = ""
    config_map_key: str = ""
    datasources: list[DatasourceInput] = field(default_factory=list)
    custom_folder_name: str = ""
    custom_uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def hash(self) -> str:
        """A digest of every spec field that defines the dashboard contents."""
        spec = {
            "json": self.json,
            "jsonnet": self.jsonnet,
            "url": self.url,
            "grafanaCom": (
                None
                if self.grafana_com is None
                else [self.grafana_com.id, self.grafana_com.revision]
            ),
            "configMapRef": [self.config_map_name, self.config_map_key],
            "datasources": [[d.input_name, d.datasource_name] for d in self.datasources],
            "customFolderName": self.custom_folder_name,
            "uid": self.custom_uid,
        }
        encoded = json.dumps(spec, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    @property
    def uid(self) -> str:
        """The uid under which the dashboard is stored in Grafana."""
        if self.custom_uid:
            return self.custom_uid
        return hashlib.sha1(f"{self.namespace}/{self.name}".encode("utf-8")).hexdigest()


def get_file_type(path: str) -> SourceType:
    """Guess the document type of a remote file from its extension."""
    extension = path.split(".")[-1].strip().lower()
    if extension == "json":
        return SourceType.JSON
    if extension in ("grafonnet", "jsonnet"):
        return SourceType.JSONNET
    return SourceType.UNKNOWN


def latest_revision(items: Iterable[int], order_by: str, direction: str) -> int:
    """Pick the newest revision, trusting a revision ordering when reported."""
    revisions = list(items)
    if not revisions:
        raise DashboardPipelineError("no revisions to choose from")
    if order_by == "revision":
        if direction == "asc":
            return revisions[-1]
        if direction == "desc":
            return revisions[0]
    return max(0, *revisions)


def _parse_float(text: str) -> float | int:
    value = float(text)
    if value.is_integer() and abs(value) < _MAX_INTEGRAL_FLOAT:
        return int(value)
    return value


def _encode(document: Any) -> bytes:
    text = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text.strip().encode("utf-8")


def _revisions_from(content: bytes) -> tuple[list[int], str, str]:
    try:
        payload = json.loads(content)
    except ValueError as exc:
        raise DashboardPipelineError(
            f"failed to unmarshal list dashboard revisions response: {exc}"
        ) from exc
    if payload is None:
        return [], "", ""
    if not isinstance(payload, dict):
        raise DashboardPipelineError(
            "failed to unmarshal list dashboard revisions response: expected an object"
        )
    revisions = []
    for item in payload.get("items") or []:
        revision = item.get("revision", 0) if isinstance(item, dict) else None
        if not isinstance(revision, int) or isinstance(revision, bool):
            raise DashboardPipelineError(
                "failed to unmarshal list dashboard revisions response: invalid revision"
            )
        revisions.append(revision)
    return revisions, str(payload.get("orderBy") or ""), str(payload.get("direction") or "")


class DashboardPipeline:
    """Turns a dashboard resource into the JSON document submitted to Grafana."""

    def __init__(
        self,
        dashboard: Dashboard,
        session: requests.Session | None = None,
        config_map_reader: ConfigMapReader | None = None,
        on_json_fetched: Callable[[Dashboard], None] | None = None,
        jsonnet_evaluator: JsonnetEvaluator | None = None,
    ) -> None:
        self.dashboard = dashboard
        self.session = session if session is not None else requests.Session()
        self.config_map_reader = config_map_reader
        self.on_json_fetched = on_json_fetched
        self.jsonnet_evaluator = jsonnet_evaluator
        self.json = ""
        self.board: dict[str, Any] = {}
        self.hash = ""
        self._log = logger.getChild(f"dashboard-{dashboard.name}")

    def process_dashboard(
        self,
        known_hash: str,
        folder_id: int | None,
        folder_name: str,
        force_recreate: bool = False,
    ) -> bytes | None:
        """Return the dashboard payload, or None when it is unchanged."""
        self._obtain_json()

        digest = self.dashboard.hash
        if digest == known_hash and not force_recreate:
            self.hash = known_hash
            return None
        self.hash = digest

        self._resolve_datasources()
        self._validate_json()

        # Grafana always assigns ids itself; the uid comes from the resource.
        self.board["id"] = None
        self.board["uid"] = self.dashboard.uid
        self.board["folderId"] = folder_id
        self.board["folderName"] = folder_name
        return _encode(self.board)

    def new_hash(self) -> str:
        """The hash computed by the last call to process_dashboard."""
        return self.hash

    def _obtain_json(self) -> None:
        spec = self.dashboard
        if spec.url and spec.grafana_com is not None:
            raise DashboardPipelineError("both dashboard url and grafana.com source specified")

        if spec.grafana_com is not None:
            try:
                self._load_from_grafana_com()
                return
            except Exception as exc:
                self._log.error(
                    "failed to request dashboard from grafana.com, "
                    "falling back to config map; if specified: %s", exc
                )

        if spec.url:
            try:
                self._load_from_url()
                return
            except Exception as exc:
                self._log.error(
                    "failed to request dashboard url, "
                    "falling back to config map; if specified: %s", exc
                )

        if spec.config_map_name:
            try:
                self._load_from_config_map()
                return
            except Exception as exc:
                self._log.error("failed to get config map, falling back to raw json: %s", exc)

        if spec.json:
            self.json = spec.json
            return

        if spec.jsonnet:
            try:
                self.json = self._load_jsonnet(spec.jsonnet)
                return
            except Exception as exc:
                self._log.error("failed to parse jsonnet: %s", exc)

        raise DashboardPipelineError("unable to obtain dashboard contents")

    def _load_jsonnet(self, source: str) -> str:
        if self.jsonnet_evaluator is None:
            raise DashboardPipelineError("no jsonnet evaluator configured")
        return self.jsonnet_evaluator(self.dashboard.name, source)

    def _store_fetched_json(self) -> None:
        if self.json != self.dashboard.json:
            self.dashboard.json = self.json
            if self.on_json_fetched is not None:
                self.on_json_fetched(self.dashboard)

    def _load_from_url(self) -> None:
        raw_url = self.dashboard.url
        parsed = urlparse(raw_url)
        if not parsed.scheme and not raw_url.startswith("/"):
            raise DashboardPipelineError(f"invalid url {raw_url}")

        try:
            resp = self.session.get(raw_url)
        except (requests.RequestException, ValueError) as exc:
            raise DashboardPipelineError(f"cannot request {raw_url}") from exc

        with resp:
            if resp.status_code != 200:
                raise DashboardPipelineError(f"request failed with status {resp.status_code}")
            body = resp.content.decode("utf-8", errors="replace")

        if get_file_type(parsed.path) is SourceType.JSONNET:
            self.json = self._load_jsonnet(body)
        else:
            self.json = body
        self._store_fetched_json()

    def _load_from_grafana_com(self) -> None:
        try:
            url = self._grafana_com_dashboard_url()
        except DashboardPipelineError as exc:
            raise DashboardPipelineError(
                f"failed to get grafana.com dashboard url: {exc}"
            ) from exc

        try:
            resp = self.session.get(url)
        except requests.RequestException as exc:
            raise DashboardPipelineError(
                f"failed to request dashboard url '{url}': {exc}"
            ) from exc
        with resp:
            self.json = resp.content.decode("utf-8", errors="replace")
        self._store_fetched_json()

    def _grafana_com_dashboard_url(self) -> str:
        source = self.dashboard.grafana_com
        assert source is not None
        revision = source.revision
        if revision is None:
            try:
                revision = self._latest_grafana_com_revision(source.id)
            except DashboardPipelineError as exc:
                raise DashboardPipelineError(
                    f"failed to get latest revision for dashboard id {source.id}: {exc}"
                ) from exc
        return f"{GRAFANA_COM_DASHBOARD_API_URL_ROOT}/{source.id}/revisions/{revision}/download"

    def _latest_grafana_com_revision(self, dashboard_id: int) -> int:
        url = f"{GRAFANA_COM_DASHBOARD_API_URL_ROOT}/{dashboard_id}/revisions"
        try:
            resp = self.session.get(url)
        except requests.RequestException as exc:
            raise DashboardPipelineError(f"failed to make request to {url}: {exc}") from exc
        with resp:
            if resp.status_code != 200:
                raise DashboardPipelineError(
                    "request to list available grafana dashboard revisions failed "
                    f"with status code '{resp.status_code}'"
                )
            revisions, order_by, direction = _revisions_from(resp.content)
        if not revisions:
            raise DashboardPipelineError(
                "list dashboard revisions request succeeded but no revisions returned"
            )
        return latest_revision(revisions, order_by, direction)

    def _load_from_config_map(self) -> None:
        if self.config_map_reader is None:
            raise DashboardPipelineError("no config map reader configured")
        self.json = self.config_map_reader(
            self.dashboard.namespace,
            self.dashboard.config_map_name,
            self.dashboard.config_map_key,
        )

    def _resolve_datasources(self) -> None:
        text = self.json
        for rule in self.dashboard.datasources:
            if not rule.datasource_name or not rule.input_name:
                msg = "invalid datasource input rule, input or datasource empty"
                self._log.info(msg)
                raise DashboardPipelineError(msg)
            text = text.replace("${" + rule.input_name + "}", rule.datasource_name)
            self._log.info(
                "resolving input %s to datasource %s", rule.input_name, rule.datasource_name
            )
        self.json = text

    def _validate_json(self) -> None:
        try:
            document = json.loads(self.json, parse_float=_parse_float)
        except ValueError as exc:
            raise DashboardPipelineError(f"invalid dashboard json: {exc}") from exc
        if not isinstance(document, dict):
            raise DashboardPipelineError("dashboard json must be an object")
        self.board = document