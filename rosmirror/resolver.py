"""
File Resolver - maps device requests onto the mirror store

    /routeros/{filename}            pointer file, global CHANGELOG or root file
    /routeros/{version}/{filename}  artifact, per-version CHANGELOG, packages.csv

Pointer names are answered no matter which version segment the device put in
front of them.
"""
import os
import time
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from rosmirror.constants import (
    CHANGELOG_FILE_NAME,
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
    PACKAGES_CSV_NAME,
    TEXT_CONTENT_TYPE,
)
from rosmirror.pointers import build_pointer_map, is_pointer_file, pointer_content
from rosmirror.utils import is_safe_segment
from rosmirror.versions import VersionStore

logger = structlog.get_logger("resolver")


@dataclass
class PhysicalFile:
    path: str
    filename: str
    content_type: str
    as_attachment: bool


@dataclass
class SynthesizedText:
    text: str
    content_type: str = TEXT_CONTENT_TYPE


@dataclass
class NotFound:
    requested: str
    reason: str = "File not found"


@dataclass
class Forbidden:
    requested: str


Resolution = Union[PhysicalFile, SynthesizedText, NotFound, Forbidden]


def content_type_for(filename: str) -> str:
    if filename.upper() == CHANGELOG_FILE_NAME:
        return TEXT_CONTENT_TYPE
    _, ext = os.path.splitext(filename.lower())
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


class FileResolver:
    """Read-only view of the store for device-facing requests."""

    def __init__(self, store: VersionStore, clock=time.time):
        self.store = store
        self.state = store.state
        self.clock = clock

    def resolve(self, version: Optional[str], filename: str) -> Resolution:
        requested = f"{version}/{filename}" if version else filename

        if not filename:
            return NotFound(requested, "Filename required")

        if is_pointer_file(filename):
            return self.resolve_pointer(filename, requested)

        if version:
            if not (is_safe_segment(version) and is_safe_segment(filename)):
                logger.warning("path traversal attempt", requested=requested)
                return Forbidden(requested)
            return self._physical(self._versioned_path(version, filename), filename, requested)

        if not is_safe_segment(filename):
            logger.warning("path traversal attempt", requested=requested)
            return Forbidden(requested)

        if filename.upper() == CHANGELOG_FILE_NAME:
            path = self.store.global_changelog_path()
        else:
            path = self.store.root_file_path(filename)
        return self._physical(path, filename, requested)

    def resolve_pointer(self, filename: str, requested: Optional[str] = None) -> Resolution:
        requested = requested or filename

        # A non-empty file on disk wins over synthesized content
        literal = self.store.find_root_file(filename) if is_safe_segment(filename) else None
        if literal:
            text = self.store.read_text(literal)
            if text:
                return SynthesizedText(text)

        text = self.pointer_text(filename)
        if text is None:
            logger.info("pointer not available", requested=requested)
            return NotFound(requested, "Pointer not available")
        return SynthesizedText(text)

    def pointer_text(self, filename: str) -> Optional[str]:
        active = self.state.snapshot()
        epoch = int(self.clock())
        pointer_map = build_pointer_map(
            active["v6"], epoch, active["v7Fixed"], epoch, active["v7Latest"], epoch,
        )
        value = pointer_map.get(filename)
        if value is None or not value[0]:
            return None
        return pointer_content(*value)

    def _versioned_path(self, version: str, filename: str) -> Optional[str]:
        if filename.upper() == CHANGELOG_FILE_NAME:
            return self.store.changelog_path(version)
        if filename.lower() == PACKAGES_CSV_NAME:
            return self.store.packages_csv_lookup(version)
        return self.store.artifact_path(version, filename)

    @staticmethod
    def _physical(path: Optional[str], filename: str, requested: str) -> Resolution:
        if not path or not os.path.isfile(path):
            logger.debug("file not found", requested=requested)
            return NotFound(requested)
        return PhysicalFile(
            path=path,
            filename=filename,
            content_type=content_type_for(filename),
            as_attachment=filename.upper() != CHANGELOG_FILE_NAME,
        )
