"""Keeps the dashboards known to Grafana in step with the dashboard resources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from .dashboard_client import DashboardClient, DashboardClientError, DashboardLookup
from .dashboard_pipeline import Dashboard, DashboardPipeline, DashboardPipelineError

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[Dashboard], DashboardPipeline]
Matcher = Callable[[Dashboard], bool]


@dataclass(frozen=True)
class DashboardRef:
    """What is remembered about a dashboard that was submitted to Grafana."""

    name: str
    namespace: str = ""
    uid: str = ""
    hash: str = ""
    folder_id: int | None = None
    folder_name: str = ""


def in_namespace(namespace_dashboards: Iterable[Dashboard], item: DashboardRef) -> bool:
    """Whether a known dashboard is still present among the namespace's dashboards."""
    return any(
        d.name == item.name and d.namespace == item.namespace for d in namespace_dashboards
    )


def _find(known_dashboards: Iterable[DashboardRef], item: Dashboard) -> DashboardRef | None:
    return next(
        (d for d in known_dashboards if d.name == item.name and d.namespace == item.namespace),
        None,
    )


def find_hash(known_dashboards: Iterable[DashboardRef], item: Dashboard) -> str:
    """The hash of a known dashboard, or an empty string."""
    ref = _find(known_dashboards, item)
    return ref.hash if ref is not None else ""


def find_uid(known_dashboards: Iterable[DashboardRef], item: Dashboard) -> str:
    """The uid of a known dashboard, or an empty string."""
    ref = _find(known_dashboards, item)
    return ref.uid if ref is not None else ""


class DashboardRegistry:
    """The dashboards that have been submitted to Grafana."""

    def __init__(self) -> None:
        self._refs: dict[tuple[str, str], DashboardRef] = {}

    def add(self, dashboard: Dashboard, folder_id: int | None, folder_name: str) -> DashboardRef:
        """Remember a submitted dashboard, replacing any earlier entry for it."""
        ref = DashboardRef(
            name=dashboard.name,
            namespace=dashboard.namespace,
            uid=dashboard.uid,
            hash=dashboard.hash,
            folder_id=folder_id,
            folder_name=folder_name,
        )
        self._refs[(dashboard.namespace, dashboard.name)] = ref
        return ref

    def remove(self, uid: str) -> None:
        """Forget every dashboard stored under the given uid."""
        self._refs = {key: ref for key, ref in self._refs.items() if ref.uid != uid}

    def for_namespace(self, namespace: str) -> list[DashboardRef]:
        """Known dashboards of a namespace; an empty namespace means all of them."""
        return [ref for ref in self._refs.values() if not namespace or ref.namespace == namespace]


class DashboardSynchronizer:
    """Submits new and changed dashboards and removes deleted ones."""

    def __init__(
        self,
        registry: DashboardRegistry,
        client: DashboardClient,
        is_match: Matcher,
        pipeline_factory: PipelineFactory | None = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.is_match = is_match
        self.pipeline_factory = pipeline_factory or DashboardPipeline
        self.synced = False
        self.errors: dict[str, Exception] = {}

    def sync(self, namespace: str, dashboards: Iterable[Dashboard]) -> None:
        """Bring Grafana in line with the dashboards found in a namespace."""
        dashboards = list(dashboards)
        known = self.registry.for_namespace(namespace)
        to_delete = [ref for ref in known if not in_namespace(dashboards, ref)]

        for dashboard in dashboards:
            self._sync_one(dashboard, known)

        for ref in to_delete:
            try:
                result = self.client.delete_dashboard_by_uid(ref.uid)
                logger.info("delete result was %s", result.message)
            except DashboardClientError as exc:
                logger.error("error deleting dashboard %s: %s", ref.uid, exc)

            self.registry.remove(ref.uid)
            known = self.registry.for_namespace(namespace)

            # Only folders named after the namespace are managed here.
            if ref.folder_name in ("", ref.namespace):
                if not self.client.safe_to_delete(known, ref.folder_id):
                    logger.info("folder cannot be deleted as it's being used by other dashboards")
                    break
                try:
                    self.client.delete_folder(ref.folder_id)
                except DashboardClientError as exc:
                    logger.error("delete dashboard folder %s failed: %s", ref.folder_id, exc)

        self.synced = True

    def _sync_one(self, dashboard: Dashboard, known: list[DashboardRef]) -> None:
        if not self.is_match(dashboard):
            logger.info(
                "dashboard %s/%s found but selectors do not match",
                dashboard.namespace,
                dashboard.name,
            )
            return

        folder_name = dashboard.custom_folder_name or dashboard.namespace
        try:
            folder = self.client.create_or_update_folder(folder_name)
        except DashboardClientError as exc:
            logger.error("failed to get or create folder %s: %s", folder_name, exc)
            self._manage_error(dashboard, exc)
            return
        folder_id = folder.id if folder.id is not None else 0

        known_hash = find_hash(known, dashboard)
        known_uid = find_uid(known, dashboard)
        pipeline = self.pipeline_factory(dashboard)

        error: Exception | None = None
        processed: bytes | None = None
        try:
            processed = pipeline.process_dashboard(known_hash, folder_id, folder_name, False)
        except DashboardPipelineError as exc:
            error = exc

        # Dashboards removed through the Grafana console are recreated.
        if known_uid:
            try:
                lookup = self.client.get_dashboard(known_uid)
            except DashboardClientError as exc:
                logger.error("failed to search Grafana for dashboard: %s", exc)
                lookup = DashboardLookup()
            if not lookup.exists:
                logger.info(
                    "dashboard %s has been deleted via grafana console, recreating",
                    dashboard.name,
                )
                try:
                    processed = pipeline.process_dashboard(known_hash, folder_id, folder_name, True)
                except DashboardPipelineError as exc:
                    self._manage_error(dashboard, exc)
                    return

        if error is not None:
            logger.error(
                "cannot process dashboard %s/%s: %s", dashboard.namespace, dashboard.name, error
            )
            self._manage_error(dashboard, error)
            return

        if processed is None:
            return

        try:
            self.client.create_or_update_dashboard(processed, folder_id, folder_name)
        except DashboardClientError as exc:
            self._manage_error(dashboard, exc)
            return

        self._manage_success(dashboard, folder_id, folder_name)

    def _manage_success(self, dashboard: Dashboard, folder_id: int, folder_name: str) -> None:
        logger.info(
            "dashboard %s/%s successfully submitted", dashboard.namespace, dashboard.name
        )
        self.errors.pop(f"{dashboard.namespace}/{dashboard.name}", None)
        self.registry.add(dashboard, folder_id, folder_name)

    def _manage_error(self, dashboard: Dashboard, issue: Exception) -> None:
        self.errors[f"{dashboard.namespace}/{dashboard.name}"] = issue
        logger.error("error updating dashboard %s/%s: %s", dashboard.namespace, dashboard.name, issue)