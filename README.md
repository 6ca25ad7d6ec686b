# grafana_reconcile

A library for keeping a Grafana instance in step with a declared set of
resources: dashboards and their folders, legacy alert notification
channels, provisioned datasources, plugins and jsonnet libraries.

The HTTP parts talk to Grafana (and to grafana.com) with `requests`.
Every client takes an optional `requests.Session`, so you can supply your
own transport settings.

## Installation

```
pip install .
```

The tests use the `test` extra:

```
pip install .[test]
pytest
```

## Modules

- `grafana_reconcile.notification_client` holds `NotificationChannelClient`,
  with `create_notification_channel`, `update_notification_channel`,
  `get_notification_channel` and `delete_notification_channel_by_uid`.
  Each method returns a `GrafanaResponse`. A non-200 status, a network
  failure or a malformed body raises `NotificationClientError`.
- `grafana_reconcile.notification_pipeline` holds
  `NotificationChannelPipeline.process(known_hash)`. It checks that the
  JSON of a `NotificationChannel` is valid and returns the payload to
  send. It returns `None` when the SHA-256 of the JSON equals
  `known_hash`. A missing or invalid definition raises
  `NotificationPipelineError`.
- `grafana_reconcile.notification_sync` holds
  `NotificationChannelSynchronizer.sync(namespace, channels)`:
  - Every matching channel is created, or updated when Grafana already
    knows its uid.
  - Channels that were submitted earlier and are no longer listed are
    deleted.
  - Per-channel failures are collected in `errors`.
  - `known_channels(namespace)` lists what has been submitted.
- `grafana_reconcile.dashboard_client` holds `DashboardClient`, which does
  the following:
  - `get_dashboard` looks a dashboard up. It returns a `DashboardLookup`;
    for an unknown uid, `exists` is false.
  - `create_or_update_folder` finds a folder by title or creates it.
  - `create_or_update_dashboard` and `delete_dashboard_by_uid` submit and
    remove dashboards.
  - `delete_folder` removes a folder.
  - `safe_to_delete` reports whether any known dashboard still uses a
    folder.
  - Failures raise `DashboardClientError`.
- `grafana_reconcile.dashboard_pipeline` holds `DashboardPipeline`. It
  loads the JSON of a `Dashboard` from the first source that works, in
  this order:
  1. grafana.com (`GrafanaComSource`, latest revision if none is pinned)
  2. a URL
  3. a config map, through a `config_map_reader` callable
  4. inline JSON
  5. jsonnet, through a `jsonnet_evaluator` callable

  After loading, it substitutes `${input}` placeholders using
  `DatasourceInput` rules. `process_dashboard` returns the payload, or
  `None` when the dashboard's hash is unchanged. The helpers
  `get_file_type` and `latest_revision` are public too.
- `grafana_reconcile.dashboard_sync` holds `DashboardRegistry`, which
  remembers submitted dashboards as `DashboardRef` values. It also holds
  `DashboardSynchronizer.sync(namespace, dashboards)`, which does three
  things:
  - It submits new and changed dashboards into per-namespace (or custom)
    folders.
  - It recreates dashboards that were removed in Grafana.
  - It deletes dashboards that disappeared, then deletes their folders
    once those are empty.

  The module also provides `in_namespace`, `find_hash` and `find_uid`.
- `grafana_reconcile.datasources` renders a `DataSource` into
  provisioning YAML with `render_datasources` and `process_datasource`.
  `reconcile_datasources` computes the config map data for a set of
  datasources and returns a `DatasourceReconcileResult`. That result holds
  the data, its order-independent `datasources_hash`, whether the hash
  changed, and which entries were updated, failed or deleted.
- `grafana_reconcile.plugins` covers plugin selection:
  - `PluginsHelper.plugin_exists` asks the plugin database whether a
    `Plugin` version can be downloaded. The default session does not
    verify TLS certificates.
  - `PluginsHelper.filter_plugins(installed, failed, requested)` decides
    which plugins to install and whether anything changed.
  - `pick_latest_versions` keeps only the newest semver version of each
    requested plugin.
  - `build_env` builds the `name:version,...` list.
- `grafana_reconcile.jsonnet_libraries` writes the files of every
  `LibraryConfigMap` annotated `jsonnet/library: "true"` below a base path
  with `import_libraries`. Only files ending in `.libsonnet` are
  accepted; `validate_file_extension` raises `ValueError` otherwise.

## Examples

Create a notification channel:

```python
from grafana_reconcile.notification_client import NotificationChannelClient

password = "password"
client = NotificationChannelClient("http://localhost:3000", "user", password, timeout=5)
channel = b'{"uid": "team-alerts", "name": "Team alerts", "type": "email"}'
response = client.create_notification_channel(channel)
print(response.uid, response.message)
```

Synchronise the dashboards of a namespace:

```python
from grafana_reconcile.dashboard_client import DashboardClient
from grafana_reconcile.dashboard_pipeline import Dashboard
from grafana_reconcile.dashboard_sync import DashboardRegistry, DashboardSynchronizer

password = "password"
client = DashboardClient("http://localhost:3000", "user", password, timeout=5)
registry = DashboardRegistry()
synchronizer = DashboardSynchronizer(registry, client, is_match=lambda dashboard: True)

overview = Dashboard(name="overview", namespace="monitoring", json='{"title": "Overview"}')
synchronizer.sync("monitoring", [overview])
print(registry.for_namespace("monitoring"), synchronizer.errors)
```

Render the datasources config map data:

```python
from grafana_reconcile.datasources import DataSource, reconcile_datasources

prometheus = DataSource(
    name="Prometheus",
    namespace="monitoring",
    datasources=[{"name": "Prometheus", "type": "prometheus", "url": "http://prometheus:9090"}],
)
result = reconcile_datasources([prometheus], known_data={}, last_hash="")
print(result.changed, list(result.data))  # True ['monitoring_prometheus.yaml']
```

## What it does not do

- It does not watch a cluster or run a reconcile loop. The caller lists
  the resources, passes them in, and decides when to call `sync`.
- It does not read from or write to any Kubernetes API. Config maps are
  read through the `config_map_reader` callable you supply. Fetched
  dashboard JSON is handed to `on_json_fetched`. Reconciled datasource
  data is returned, not stored.
- It does not evaluate jsonnet. Jsonnet dashboards need a
  `jsonnet_evaluator` callable.
- Known dashboards and channels are kept in memory only. Nothing is
  persisted between runs.
- It has no command-line tool or server.