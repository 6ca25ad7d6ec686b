"""Keeps Grafana's notification channels in step with the channel resources."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from .notification_client import (
    GrafanaResponse,
    NotificationChannelClient,
    NotificationClientError,
)
from .notification_pipeline import (
    NotificationChannel,
    NotificationChannelPipeline,
    NotificationPipelineError,
)

logger = logging.getLogger(__name__)

Matcher = Callable[[NotificationChannel], bool]


@dataclass(frozen=True)
class ChannelRef:
    """What is remembered about a channel that was submitted to Grafana."""

    name: str
    namespace: str = ""
    uid: str = ""
    id: int | None = None
    hash: str = ""


def _channel_uid(processed: bytes) -> str | None:
    try:
        document = json.loads(processed)
    except ValueError as exc:
        raise NotificationPipelineError(f"invalid notificationchannel json: {exc}") from exc
    if not isinstance(document, dict):
        return None
    uid = document.get("uid")
    if uid is not None and not isinstance(uid, str):
        raise NotificationPipelineError("notificationchannel uid must be a string")
    return uid


class NotificationChannelSynchronizer:
    """Creates, updates and deletes notification channels in Grafana."""

    def __init__(self, client: NotificationChannelClient, is_match: Matcher) -> None:
        self.client = client
        self.is_match = is_match
        self.synced = False
        self.errors: dict[str, Exception] = {}
        self._known: dict[tuple[str, str], ChannelRef] = {}

    def known_channels(self, namespace: str) -> list[ChannelRef]:
        """Known channels of a namespace; an empty namespace means all of them."""
        return [
            ref for ref in self._known.values() if not namespace or ref.namespace == namespace
        ]

    def sync(self, namespace: str, channels: Iterable[NotificationChannel]) -> None:
        """Bring Grafana in line with the given notification channel resources.

        Raises NotificationPipelineError when a processed payload is not valid JSON.
        """
        channels = list(channels)
        known = self.known_channels(namespace)
        present = {channel.name for channel in channels}
        to_delete = [ref for ref in known if ref.name not in present]

        for channel in channels:
            if not self.is_match(channel):
                logger.info(
                    "notificationchannel %s/%s found but selectors do not match",
                    channel.namespace,
                    channel.name,
                )
                continue

            known_hash = next((ref.hash for ref in known if ref.name == channel.name), "")
            pipeline = NotificationChannelPipeline(channel)
            try:
                processed = pipeline.process(known_hash)
            except NotificationPipelineError as exc:
                logger.error(
                    "cannot process notificationchannel %s/%s: %s",
                    channel.namespace,
                    channel.name,
                    exc,
                )
                self._manage_error(channel, exc)
                continue

            if processed is None:
                continue

            uid = _channel_uid(processed)
            if uid is None:
                logger.info(
                    "cannot process notificationchannel %s/%s, UID is nil",
                    channel.namespace,
                    channel.name,
                )
                return

            try:
                try:
                    self.client.get_notification_channel(uid)
                except NotificationClientError:
                    status = self.client.create_notification_channel(processed)
                else:
                    status = self.client.update_notification_channel(processed, uid)
            except NotificationClientError as exc:
                logger.info(
                    "cannot submit notificationchannel %s/%s",
                    channel.namespace,
                    channel.name,
                )
                self._manage_error(channel, exc)
                continue

            self._manage_success(channel, status, pipeline.new_hash())

        for ref in to_delete:
            try:
                status = self.client.delete_notification_channel_by_uid(ref.uid)
            except NotificationClientError as exc:
                logger.error("error deleting notificationchannel %s: %s", ref.uid, exc)
                status = GrafanaResponse.empty()
            logger.info("delete result was %s", status.uid)
            self._known.pop((ref.namespace, ref.name), None)

        self.synced = True

    def _manage_success(
        self, channel: NotificationChannel, status: GrafanaResponse, digest: str
    ) -> None:
        logger.info(
            "notificationchannel %s/%s successfully submitted", channel.namespace, channel.name
        )
        self.errors.pop(f"{channel.namespace}/{channel.name}", None)
        self._known[(channel.namespace, channel.name)] = ChannelRef(
            name=channel.name,
            namespace=channel.namespace,
            uid=status.uid or "",
            id=status.id,
            hash=digest,
        )

    def _manage_error(self, channel: NotificationChannel, issue: Exception) -> None:
        self.errors[f"{channel.namespace}/{channel.name}"] = issue