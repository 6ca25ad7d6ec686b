"""Validation and change detection for notification channel definitions."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass

_MAX_INTEGRAL_FLOAT = 1e21

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class NotificationPipelineError(Exception):
    """Raised when a notification channel definition cannot be processed."""


@dataclass
class NotificationChannel:
    """A notification channel resource holding its raw JSON definition."""

    name: str
    namespace: str = ""
    json: str = ""


def _parse_float(text: str) -> float | int:
    value = float(text)
    if value.is_integer() and abs(value) < _MAX_INTEGRAL_FLOAT:
        return int(value)
    return value


def _encode(document: object) -> bytes:
    text = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text.strip().encode("utf-8")


class NotificationChannelPipeline:
    """Turns a channel resource into the JSON payload sent to Grafana."""

    def __init__(self, channel: NotificationChannel) -> None:
        self.channel = channel
        self.json = ""
        self.document: dict | None = None
        self.hash = ""

    def process(self, known_hash: str) -> bytes | None:
        """Return the channel payload, or None when it is unchanged."""
        self._obtain_json()

        digest = self._generate_hash()
        if digest == known_hash:
            self.hash = known_hash
            return None
        self.hash = digest

        self._validate_json()
        return _encode(self.document)

    def new_hash(self) -> str:
        """The hash computed by the last call to process."""
        return self.hash

    def _obtain_json(self) -> None:
        if not self.channel.json:
            raise NotificationPipelineError("notificationchannel does not contain json")
        self.json = self.channel.json

    def _validate_json(self) -> None:
        try:
            document = json.loads(self.json, parse_float=_parse_float)
        except ValueError as exc:
            raise NotificationPipelineError(f"invalid notificationchannel json: {exc}") from exc
        if document is not None and not isinstance(document, dict):
            raise NotificationPipelineError("notificationchannel json must be an object")
        self.document = document

    def _generate_hash(self) -> str:
        return hashlib.sha256(self.channel.json.encode("utf-8")).hexdigest()