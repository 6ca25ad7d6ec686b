"""Rendering and reconciling the datasources config map served to Grafana."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import yaml

DATASOURCES_API_VERSION = 1

logger = logging.getLogger(__name__)


@dataclass
class DataSource:
    """A datasource resource holding one or more Grafana datasource definitions."""

    name: str
    namespace: str = ""
    datasources: list[dict[str, Any]] = field(default_factory=list)

    @property
    def filename(self) -> str:
        """The config map key under which this resource's datasources are stored."""
        return f"{self.namespace}_{self.name.lower()}.yaml"


@dataclass
class DatasourceReconcileResult:
    """The outcome of reconciling the datasources config map."""

    data: dict[str, str]
    hash: str
    changed: bool
    updated: list[DataSource] = field(default_factory=list)
    failed: dict[str, Exception] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)


def render_datasources(datasource: DataSource) -> str:
    """Render a resource's datasources as a Grafana provisioning YAML document."""
    document = {
        "apiVersion": DATASOURCES_API_VERSION,
        "datasources": list(datasource.datasources),
    }
    try:
        return yaml.safe_dump(
            document, sort_keys=True, default_flow_style=False, allow_unicode=True
        )
    except yaml.YAMLError as exc:
        raise ValueError(f"error parsing datasource: {exc}") from exc


def process_datasource(datasource: DataSource, known_data: dict[str, str]) -> None:
    """Render a datasource and store it in the config map data."""
    known_data[datasource.filename] = render_datasources(datasource)


def datasources_hash(data: Mapping[str, str] | None) -> str:
    """A digest of the config map data that does not depend on key order."""
    if not data:
        return ""
    digest = hashlib.sha256()
    for key in sorted(data):
        digest.update(key.encode("utf-8"))
        digest.update(data[key].encode("utf-8"))
    return digest.hexdigest()


def reconcile_datasources(
    cluster_datasources: Iterable[DataSource],
    known_data: Mapping[str, str] | None,
    last_hash: str = "",
) -> DatasourceReconcileResult:
    """Compute the config map data for the datasources found on the cluster.

    Entries for resources no longer present are removed, every present resource
    is rendered again, and the new hash is compared with the last one stored.
    """
    cluster = list(cluster_datasources)
    data = dict(known_data or {})
    on_cluster = {ds.filename for ds in cluster}

    deleted = [key for key in data if key not in on_cluster]
    for key in deleted:
        logger.info("deleting datasource %s", key)
        del data[key]

    updated: list[DataSource] = []
    failed: dict[str, Exception] = {}
    for datasource in cluster:
        try:
            process_datasource(datasource, data)
        except ValueError as exc:
            logger.warning(
                "processing datasource %s/%s failed: %s",
                datasource.namespace,
                datasource.name,
                exc,
            )
            failed[f"{datasource.namespace}/{datasource.name}"] = exc
            continue
        updated.append(datasource)

    new_hash = datasources_hash(data)
    return DatasourceReconcileResult(
        data=data,
        hash=new_hash,
        changed=new_hash != last_hash,
        updated=updated,
        failed=failed,
        deleted=deleted,
    )