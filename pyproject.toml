[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "grafana-reconcile"
version = "0.1.0"
description = "Keep Grafana dashboards, folders, notification channels, datasources, plugins and jsonnet libraries in step with declared resources"
requires-python = ">=3.10"
keywords = [
    "grafana",
    "dashboards",
    "reconciliation",
    "notification-channels",
    "datasources",
    "plugins",
    "jsonnet",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "requests",
    "pyyaml",
    "semver",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["grafana_reconcile"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
