"""Keep Grafana dashboards, folders, notification channels, datasources, plugins and jsonnet libraries in step with declared resources."""

__version__ = "0.1.0"