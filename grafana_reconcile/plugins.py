"""Consolidating the Grafana plugins requested by dashboards."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

import requests
import semver

PLUGINS_URL = "https://grafana.com/api/plugins/{}/versions/{}"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plugin:
    """A Grafana plugin at a specific version."""

    name: str
    version: str


def _has_some_version_of(plugins: Iterable[Plugin], plugin: Plugin) -> bool:
    return any(p.name == plugin.name for p in plugins)


def _has_exact_version_of(plugins: Iterable[Plugin], plugin: Plugin) -> bool:
    return any(p.name == plugin.name and p.version == plugin.version for p in plugins)


def _installed_version_of(plugins: Iterable[Plugin], plugin: Plugin) -> Plugin | None:
    return next((p for p in plugins if p.name == plugin.name), None)


def _versions_of(plugins: Iterable[Plugin], plugin: Plugin) -> int:
    return sum(1 for p in plugins if p.name == plugin.name)


def _has_newer_version_of(plugins: Sequence[Plugin], plugin: Plugin) -> bool:
    version = semver.Version.parse(plugin.version)
    for listed in plugins:
        if listed.name != plugin.name:
            continue
        if semver.Version.parse(listed.version) > version:
            return True
    return False


def build_env(plugins: Iterable[Plugin]) -> str:
    """The value of the plugins environment variable: name:version pairs."""
    return ",".join(f"{p.name}:{p.version}" for p in plugins)


def pick_latest_versions(requested: Sequence[Plugin]) -> list[Plugin]:
    """Drop every plugin for which a newer version is also requested.

    Raises ValueError when a version of a compared plugin is not semver.
    """
    return [p for p in requested if not _has_newer_version_of(requested, p)]


class PluginsHelper:
    """Checks plugin availability and decides which plugins to install."""

    def __init__(
        self, base_url: str = PLUGINS_URL, session: requests.Session | None = None
    ) -> None:
        self.base_url = base_url
        if session is None:
            session = requests.Session()
            session.verify = False
        self.session = session

    def plugin_exists(self, plugin: Plugin) -> bool:
        """Whether the plugin database offers this plugin version for download."""
        url = self.base_url.format(plugin.name, plugin.version)
        try:
            with self.session.get(url) as resp:
                return resp.status_code == 200
        except requests.RequestException:
            return False

    def filter_plugins(
        self,
        installed: Sequence[Plugin],
        failed: Sequence[Plugin],
        requested: Sequence[Plugin],
    ) -> tuple[list[Plugin], bool]:
        """Return the plugins to install and whether that differs from what is installed.

        Plugins left out of the returned list are removed once the environment
        variable is rebuilt from it.
        """
        requested = list(requested)
        try:
            requested = pick_latest_versions(requested)
        except ValueError as exc:
            # Without semver there is no ordering; whichever comes first wins.
            logger.error("unable to pick latest plugin versions: %s", exc)

        filtered: list[Plugin] = []
        if not requested and installed:
            return filtered, True

        updated = False
        for plugin in requested:
            if _has_some_version_of(filtered, plugin):
                chosen = _installed_version_of(filtered, plugin)
                logger.debug(
                    "not installing version %s of %s because %s is already installed",
                    plugin.version,
                    plugin.name,
                    chosen.version if chosen else "",
                )
                continue

            if _has_exact_version_of(failed, plugin):
                continue

            if _has_exact_version_of(installed, plugin):
                filtered.append(plugin)
                continue

            if not _has_some_version_of(installed, plugin):
                filtered.append(plugin)
                logger.debug("installing plugin %s@%s", plugin.name, plugin.version)
                updated = True
                continue

            # A version change is only safe when a single dashboard asks for the plugin.
            if _versions_of(requested, plugin) == 1:
                current = _installed_version_of(installed, plugin)
                filtered.append(plugin)
                logger.debug(
                    "changing version of plugin %s from %s to %s",
                    plugin.name,
                    current.version if current else "",
                    plugin.version,
                )
                updated = True

        if any(not _has_some_version_of(requested, p) for p in installed):
            updated = True

        return filtered, updated