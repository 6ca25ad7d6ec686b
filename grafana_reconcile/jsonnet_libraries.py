"""Writing jsonnet libraries held in config maps to the local library path."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Iterable

JSONNET_EXTENSION = ".libsonnet"
JSONNET_ANNOTATION = "jsonnet/library"

logger = logging.getLogger(__name__)


@dataclass
class LibraryConfigMap:
    """A config map whose entries may be jsonnet library files."""

    name: str
    data: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def is_library(self) -> bool:
        """Whether the config map is annotated as a jsonnet library."""
        return self.annotations.get(JSONNET_ANNOTATION) == "true"


def _extension(file_path: str) -> str:
    base = file_path.rsplit("/", 1)[-1]
    index = base.rfind(".")
    return base[index:] if index >= 0 else ""


def validate_file_extension(file_path: str) -> None:
    """Raise ValueError unless the file has the jsonnet library extension."""
    if _extension(file_path) != JSONNET_EXTENSION:
        raise ValueError(f"unknown extension, expected {JSONNET_EXTENSION}")


def create_folder(config_map_name: str, base_path: str) -> str:
    """Create the library folder for a config map if missing and return its path."""
    folder_path = f"{base_path}/{config_map_name}"
    if not os.path.exists(folder_path):
        os.mkdir(folder_path)
    return folder_path


def create_file(file_path: str, contents: str) -> None:
    """Write a library file, refusing anything without the library extension."""
    validate_file_extension(file_path)
    with open(file_path, "w", encoding="utf-8") as handle:
        handle.write(contents)


def import_libraries(config_maps: Iterable[LibraryConfigMap], base_path: str) -> list[str]:
    """Write every annotated config map's files below base_path.

    Returns the paths written. A folder that cannot be created skips its
    config map; a file that cannot be written raises.
    """
    written: list[str] = []
    for config_map in config_maps:
        if not config_map.is_library:
            continue
        try:
            folder_path = create_folder(config_map.name, base_path)
        except OSError as exc:
            logger.error(
                "error creating jsonnet library directory for %s: %s", config_map.name, exc
            )
            continue
        for filename, contents in config_map.data.items():
            file_path = f"{folder_path}/{filename}"
            create_file(file_path, contents)
            logger.debug("imported jsonnet library %s", file_path)
            written.append(file_path)
    return written