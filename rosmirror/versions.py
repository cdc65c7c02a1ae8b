"""
Version Store - on-disk layout of mirrored RouterOS versions

    {root}/v6/{version}/all_packages-{arch}-{version}.zip (+ extracted *.npk)
    {root}/v7/{version}/routeros-{version}-{arch}.npk
    {root}/{v6|v7}/{version}/CHANGELOG
    {root}/packages/{major}.{minor}.csv
    {root}/versions.json
    {root}/CHANGELOG
    {root}/LATEST.6, NEWESTa7.stable, ...
"""
from __future__ import annotations

import os
import shutil
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import structlog

from rosmirror.constants import (
    BRANCH_V6,
    BRANCH_V7_FIXED,
    BRANCH_V7_LATEST,
    CHANGELOG_FILE_NAME,
    DISK_USAGE_CACHE_SECONDS,
    HISTORY_LIMIT,
    HISTORY_TAKE_MAX,
    PACKAGES_DIRNAME,
    VERSIONS_FILE_NAME,
)
from rosmirror.metrics import cleanup_freed_bytes_total, versions_removed_total
from rosmirror.pointers import PointerMap, pointer_content
from rosmirror.settings import ArchitectureConfig
from rosmirror.utils import (
    branch_of,
    dir_size,
    ensure_utc,
    is_safe_segment,
    now_utc,
    parse_version,
    read_json,
    safe_write_json,
    safe_write_text,
    to_mb,
)

logger = structlog.get_logger("versions")


@dataclass
class HistoryEntry:
    timestamp: datetime
    v6_stable: str = ""
    v7_fixed: str = ""
    v7_stable: str = ""

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "v6Stable": self.v6_stable,
            "v7Fixed": self.v7_fixed,
            "v7Stable": self.v7_stable,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HistoryEntry":
        return cls(
            timestamp=ensure_utc(data.get("timestamp")) or now_utc(),
            v6_stable=data.get("v6Stable") or "",
            v7_fixed=data.get("v7Fixed") or "",
            v7_stable=data.get("v7Stable") or "",
        )


@dataclass
class ActiveVersions:
    """Mutable server state shared by the sync engine and the file resolver."""

    v6: str = ""
    v7_fixed: str = ""
    v7_latest: str = ""
    last_check: Optional[datetime] = None
    downloaded_bytes: int = 0
    downloaded_files: int = 0
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def set(self, branch: str, version: str):
        with self._lock:
            if branch == BRANCH_V6:
                self.v6 = version
            elif branch == BRANCH_V7_FIXED:
                self.v7_fixed = version
            elif branch == BRANCH_V7_LATEST:
                self.v7_latest = version
            else:
                raise ValueError(f"Unknown branch: {branch}")

    def get(self, branch: str) -> str:
        with self._lock:
            return {
                BRANCH_V6: self.v6,
                BRANCH_V7_FIXED: self.v7_fixed,
                BRANCH_V7_LATEST: self.v7_latest,
            }[branch]

    def is_active(self, version: str) -> bool:
        with self._lock:
            return bool(version) and version in (self.v6, self.v7_fixed, self.v7_latest)

    def record_download(self, size: int):
        with self._lock:
            self.downloaded_bytes += size
            self.downloaded_files += 1

    def snapshot(self) -> Dict:
        with self._lock:
            return {"v6": self.v6, "v7Fixed": self.v7_fixed, "v7Latest": self.v7_latest}


class VersionStore:
    """Filesystem manager for versioned directories, pointers and history."""

    def __init__(self, root: str, arches: ArchitectureConfig, state: ActiveVersions,
                 fixed_version: str, prune_unparseable: bool = True):
        self.root = os.path.abspath(root)
        self.arches = arches
        self.state = state
        self.fixed_version = fixed_version
        self.prune_unparseable = prune_unparseable
        self.versions_file = os.path.join(self.root, VERSIONS_FILE_NAME)
        self._history_lock = threading.Lock()
        self._disk_usage_cache = (0.0, 0)
        os.makedirs(self.root, exist_ok=True)

    # ----- layout -----

    def branch_root(self, is_v6: bool) -> str:
        return os.path.join(self.root, "v6" if is_v6 else "v7")

    def version_dir(self, version: str, is_v6: bool) -> str:
        return os.path.join(self.branch_root(is_v6), version)

    @staticmethod
    def artifact_name(arch: str, version: str, is_v6: bool) -> str:
        if is_v6:
            return f"all_packages-{arch}-{version}.zip"
        return f"routeros-{version}-{arch}.npk"

    def expected_artifacts(self, version: str, is_v6: bool) -> List[str]:
        return [self.artifact_name(arch, version, is_v6) for arch in self.arches.get()]

    def packages_csv_path(self, branch: str) -> str:
        return os.path.join(self.root, PACKAGES_DIRNAME, f"{branch}.csv")

    # ----- completeness -----

    def is_complete(self, version: str, is_v6: bool) -> bool:
        """Every allowed architecture has a non-empty artifact. No partial credit."""
        if not version:
            return False
        version_dir = self.version_dir(version, is_v6)
        if not os.path.isdir(version_dir):
            return False

        for name in self.expected_artifacts(version, is_v6):
            path = os.path.join(version_dir, name)
            try:
                if os.path.getsize(path) == 0:
                    return False
            except OSError:
                return False
        return True

    # ----- retention -----

    def _sort_key(self, name: str):
        parsed = parse_version(name)
        # Unparseable names sort below every real version
        return (1, parsed) if parsed is not None else (0, ())

    def cleanup_old_versions(self, branch_root: str, keep_count: int, *protected: str) -> List[str]:
        """Delete all but the newest `keep_count` unprotected versions below `branch_root`."""
        if not os.path.isdir(branch_root):
            return []

        removed = []
        try:
            candidates = [
                name for name in os.listdir(branch_root)
                if os.path.isdir(os.path.join(branch_root, name)) and name not in protected
            ]
            if not self.prune_unparseable:
                skipped = [name for name in candidates if parse_version(name) is None]
                for name in skipped:
                    logger.info("leaving unparseable directory in place", directory=name)
                candidates = [name for name in candidates if name not in skipped]

            candidates.sort(key=self._sort_key, reverse=True)

            for name in candidates[max(keep_count, 0):]:
                full_path = os.path.join(branch_root, name)
                size = dir_size(full_path)
                try:
                    shutil.rmtree(full_path)
                except OSError as e:
                    logger.error("failed to remove old version", version=name, error=str(e))
                    continue
                removed.append(name)
                versions_removed_total.inc()
                cleanup_freed_bytes_total.inc(size)
                logger.info("removed old version", version=name, freed_mb=to_mb(size))
        except OSError as e:
            logger.error("error cleaning up old versions", folder=branch_root, error=str(e))

        return removed

    # ----- activation / removal -----

    def set_active(self, version: str) -> bool:
        if not is_safe_segment(version):
            return False

        if os.path.isdir(self.version_dir(version, True)):
            self.state.set(BRANCH_V6, version)
            logger.info("active v6 version set", version=version)
        elif not os.path.isdir(self.version_dir(version, False)):
            return False
        elif version == self.fixed_version:
            self.state.set(BRANCH_V7_FIXED, version)
            logger.info("active v7 fixed version set", version=version)
        else:
            self.state.set(BRANCH_V7_LATEST, version)
            logger.info("active v7 latest version set", version=version)
        return True

    def remove(self, version: str) -> bool:
        if not is_safe_segment(version):
            return False
        if self.state.is_active(version):
            logger.warning("refusing to remove active version", version=version)
            return False

        for is_v6 in (True, False):
            path = self.version_dir(version, is_v6)
            if not os.path.isdir(path):
                continue
            try:
                size = dir_size(path)
                shutil.rmtree(path)
            except OSError as e:
                logger.error("error removing version", version=version, error=str(e))
                return False
            cleanup_freed_bytes_total.inc(size)
            logger.info("removed version", branch="v6" if is_v6 else "v7", version=version,
                        freed_mb=to_mb(size))
            return True

        return False

    # ----- history -----

    def load_history(self) -> List[HistoryEntry]:
        data = read_json(self.versions_file, default=[])
        if not isinstance(data, list):
            return []
        entries = []
        for item in data:
            if isinstance(item, dict):
                entries.append(HistoryEntry.from_dict(item))
        return entries

    def restore_active_versions(self) -> bool:
        """Seed the active versions from the newest history entry."""
        entries = self.load_history()
        if not entries:
            return False
        latest = entries[-1]
        self.state.set(BRANCH_V6, latest.v6_stable)
        self.state.set(BRANCH_V7_FIXED, latest.v7_fixed)
        self.state.set(BRANCH_V7_LATEST, latest.v7_stable)
        logger.info("loaded active versions from history", **self.state.snapshot())
        return True

    def append_history(self, entry: HistoryEntry) -> List[HistoryEntry]:
        with self._history_lock:
            entries = self.load_history()
            entries.append(entry)
            entries = entries[-HISTORY_LIMIT:]
            try:
                safe_write_json(self.versions_file, [e.to_dict() for e in entries])
            except OSError as e:
                logger.error("error writing version history", error=str(e))
            return entries

    def history(self, take: int = 50) -> List[Dict]:
        take = max(1, min(take, HISTORY_TAKE_MAX))
        entries = sorted(self.load_history(), key=lambda e: e.timestamp, reverse=True)
        return [e.to_dict() for e in entries[:take]]

    # ----- pointers / changelog -----

    def write_pointer_files(self, pointer_map: PointerMap) -> int:
        os.makedirs(self.branch_root(True), exist_ok=True)
        os.makedirs(self.branch_root(False), exist_ok=True)

        written = 0
        for name in pointer_map:
            version, build = pointer_map[name]
            path = os.path.join(self.root, name)
            try:
                safe_write_text(path, pointer_content(version, build))
            except OSError as e:
                logger.error("error writing pointer file", file=name, error=str(e))
                continue
            written += 1
            logger.debug("created pointer file", file=name, version=version)
        return written

    def write_global_changelog(self, v6: str, v7_fixed: str, v7_latest: str):
        lines = [
            f"Current versions at {datetime.now():%Y-%m-%d %H:%M:%S}:",
            f"  RouterOS v6: {v6}",
            f"  RouterOS v7 (fixed): {v7_fixed}",
            f"  RouterOS v7 (latest): {v7_latest}",
            "",
        ]
        for version, is_v6 in ((v6, True), (v7_fixed, False), (v7_latest, False)):
            if not version:
                continue
            path = os.path.join(self.version_dir(version, is_v6), CHANGELOG_FILE_NAME)
            if not os.path.isfile(path):
                continue
            try:
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    text = f.read()
            except OSError as e:
                logger.warning("error reading changelog", version=version, error=str(e))
                continue
            lines.extend([f"=== RouterOS {version} CHANGELOG ===", text, ""])

        try:
            safe_write_text(os.path.join(self.root, CHANGELOG_FILE_NAME), "\n".join(lines) + "\n")
        except OSError as e:
            logger.error("error updating global changelog", error=str(e))

    # ----- lookups -----

    def find_root_file(self, filename: str) -> Optional[str]:
        """Case-insensitive lookup of a plain file directly below the root."""
        wanted = filename.lower()
        try:
            names = os.listdir(self.root)
        except OSError:
            return None
        for name in names:
            path = os.path.join(self.root, name)
            if name.lower() == wanted and os.path.isfile(path):
                return path
        return None

    def root_file_path(self, filename: str) -> Optional[str]:
        full_path = os.path.abspath(os.path.join(self.root, filename))
        if full_path.startswith(self.root + os.sep) and os.path.isfile(full_path):
            return full_path
        return None

    def artifact_path(self, version: str, filename: str) -> Optional[str]:
        for is_v6 in (True, False):
            path = os.path.join(self.version_dir(version, is_v6), filename)
            if os.path.isfile(path):
                return path
        return None

    def changelog_path(self, version: str) -> Optional[str]:
        return self.artifact_path(version, CHANGELOG_FILE_NAME)

    def global_changelog_path(self) -> Optional[str]:
        path = os.path.join(self.root, CHANGELOG_FILE_NAME)
        return path if os.path.isfile(path) else None

    def packages_csv_lookup(self, version: str) -> Optional[str]:
        """Accepts either a branch key ("7.20") or a full version ("7.20.4")."""
        if not version:
            return None
        for key in (version, branch_of(version)):
            path = self.packages_csv_path(key)
            if os.path.isfile(path):
                return path
        return None

    @staticmethod
    def read_text(path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            logger.error("error reading file", path=path, error=str(e))
            return None

    def global_changelog_text(self) -> Optional[str]:
        return self.read_text(self.global_changelog_path())

    def changelog_text(self, version: str) -> Optional[str]:
        if not version:
            return None
        return self.read_text(self.changelog_path(version))

    # ----- reporting -----

    def list_versions(self, is_v6: bool) -> List[str]:
        branch_root = self.branch_root(is_v6)
        if not os.path.isdir(branch_root):
            return []
        names = [
            name for name in os.listdir(branch_root)
            if os.path.isdir(os.path.join(branch_root, name)) and parse_version(name) is not None
        ]
        return sorted(names, key=parse_version, reverse=True)

    def versions_info(self) -> Dict:
        active = self.state.snapshot()
        last_check = self.state.last_check
        return {
            "v6": {"active": active["v6"], "versions": self.list_versions(True)},
            "v7": {
                "activeFixed": active["v7Fixed"],
                "activeLatest": active["v7Latest"],
                "versions": self.list_versions(False),
            },
            "lastCheck": last_check.isoformat() if last_check else None,
        }

    def disk_usage(self) -> Dict:
        cached_at, cached_bytes = self._disk_usage_cache
        if time.monotonic() - cached_at < DISK_USAGE_CACHE_SECONDS and cached_bytes > 0:
            total = cached_bytes
        else:
            total = dir_size(self.root)
            self._disk_usage_cache = (time.monotonic(), total)
        return {
            "totalMB": f"{total / 1024 / 1024:.2f}",
            "totalGB": f"{total / 1024 / 1024 / 1024:.2f}",
        }
