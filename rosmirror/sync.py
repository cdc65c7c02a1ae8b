"""
Sync Orchestrator - one update cycle against the vendor servers

Idle -> Checking -> success | network_unavailable | network_error | timeout
                    | fetch_failed | error | cancelled

Only one cycle runs at a time per process. A trigger that arrives while a
cycle is running returns already_in_progress and touches nothing.
"""
from __future__ import annotations

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import requests
import structlog

from rosmirror import archive
from rosmirror.constants import (
    BRANCH_V6,
    BRANCH_V7_FIXED,
    BRANCH_V7_LATEST,
    CHANGELOG_FILE_NAME,
    LAST_CHECK_FILE_NAME,
)
from rosmirror.exceptions import DeadlineExceeded, SyncCancelled
from rosmirror.metrics import (
    SYNC_IN_PROGRESS,
    bytes_downloaded_total,
    download_failures_total,
    files_downloaded_total,
    sync_duration_seconds,
    sync_runs_total,
)
from rosmirror.pointers import build_pointer_map
from rosmirror.settings import load_delete_prefixes
from rosmirror.upstream import UpstreamClient
from rosmirror.utils import branch_of, ensure_utc, now_utc, read_json, safe_write_json, safe_write_text, to_mb
from rosmirror.versions import HistoryEntry, VersionStore

logger = structlog.get_logger("sync")

V6_POINTER = "LATEST.6"
V7_LATEST_POINTER = "NEWESTa7.stable"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ALREADY_IN_PROGRESS = "already_in_progress"
    NETWORK_UNAVAILABLE = "network_unavailable"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    FETCH_FAILED = "fetch_failed"
    ERROR = "error"
    CANCELLED = "cancelled"


class DownloadOutcome:
    DOWNLOADED = "downloaded"
    EXISTING = "existing"
    MISSING_UPSTREAM = "missing_upstream"
    FAILED = "failed"


@dataclass
class DownloadResult:
    filename: str
    url: str
    outcome: str
    size: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {"filename": self.filename, "url": self.url, "outcome": self.outcome,
                "size": self.size, "reason": self.reason}


@dataclass
class BatchResult:
    branch: str
    version: str
    results: List[DownloadResult] = field(default_factory=list)

    @property
    def downloaded(self) -> int:
        return sum(1 for r in self.results if r.outcome == DownloadOutcome.DOWNLOADED)

    @property
    def failures(self) -> List[DownloadResult]:
        return [r for r in self.results if r.outcome == DownloadOutcome.FAILED]


@dataclass
class SyncResult:
    status: SyncStatus
    downloaded: int = 0
    versions: List[str] = field(default_factory=list)
    batches: List[BatchResult] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "status": self.status.value,
            "downloaded": self.downloaded,
            "checkedVersions": list(self.versions),
            "failures": [f.to_dict() for b in self.batches for f in b.failures],
        }


@dataclass
class BranchTarget:
    branch: str
    version: str
    is_v6: bool
    prune: bool


class SyncOrchestrator:
    """Owns the single-flight guard and drives one sync cycle end to end."""

    def __init__(self, store: VersionStore, upstream: UpstreamClient, config_dir: str,
                 sync_settings: Dict):
        self.store = store
        self.state = store.state
        self.upstream = upstream
        self.config_dir = config_dir
        self.fixed_version = sync_settings.get("v7_fixed_version", store.fixed_version)
        self.keep_versions = int(sync_settings.get("keep_versions", 3))
        self.default_deadline = sync_settings.get("deadline_seconds")
        self.last_check_file = os.path.join(config_dir, LAST_CHECK_FILE_NAME)

        self._guard = threading.Lock()
        self._cancel_event = threading.Event()
        self._closed = False

        self._load_last_check()

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def cancel(self):
        """Abort the running cycle; in-flight downloads stop at their next chunk."""
        self._cancel_event.set()

    def close(self):
        self._closed = True
        self._cancel_event.set()

    # ----- entry point -----

    def run(self, deadline_seconds: Optional[float] = None) -> SyncResult:
        if not self._guard.acquire(blocking=False):
            logger.warning("update check already in progress, skipping")
            return SyncResult(SyncStatus.ALREADY_IN_PROGRESS)

        started = time.monotonic()
        SYNC_IN_PROGRESS.set(1)
        try:
            # must clear before reading _closed
            self._cancel_event.clear()
            if self._closed:
                result = SyncResult(SyncStatus.CANCELLED)
            else:
                limit = deadline_seconds if deadline_seconds is not None else self.default_deadline
                deadline = started + float(limit) if limit is not None else None
                result = self._run_cycle(self._make_checkpoint(deadline))
        except SyncCancelled:
            logger.warning("update check cancelled")
            result = SyncResult(SyncStatus.CANCELLED)
        except (DeadlineExceeded, requests.exceptions.Timeout) as e:
            logger.error("timeout during update check", error=str(e) or type(e).__name__)
            result = SyncResult(SyncStatus.TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.error("network error during update check", error=str(e))
            result = SyncResult(SyncStatus.NETWORK_ERROR)
        except Exception as e:
            logger.exception("error during update check", error=str(e))
            result = SyncResult(SyncStatus.ERROR)
        finally:
            SYNC_IN_PROGRESS.set(0)
            self._guard.release()

        sync_runs_total.labels(result.status.value).inc()
        sync_duration_seconds.observe(time.monotonic() - started)
        return result

    def _make_checkpoint(self, deadline: Optional[float]) -> Callable[[], None]:
        def checkpoint():
            if self._cancel_event.is_set():
                raise SyncCancelled()
            if deadline is not None and time.monotonic() > deadline:
                raise DeadlineExceeded("sync deadline exceeded")
        return checkpoint

    # ----- cycle -----

    def _run_cycle(self, checkpoint: Callable[[], None]) -> SyncResult:
        logger.info("starting update check")

        if not self.upstream.check_connectivity():
            logger.warning("cannot reach upstream servers, keeping cached versions")
            return SyncResult(SyncStatus.NETWORK_UNAVAILABLE)
        checkpoint()

        v6_version, v6_build = self.upstream.resolve_version(self.upstream.pointer_url(V6_POINTER))
        v7_latest, v7_latest_build = self.upstream.resolve_version(self.upstream.pointer_url(V7_LATEST_POINTER))
        v7_fixed, v7_fixed_build = self.fixed_version, 0

        if v6_version is None or v7_latest is None:
            logger.warning("could not fetch version information from upstream")
            return SyncResult(SyncStatus.FETCH_FAILED)

        logger.info("latest versions", v6=v6_version, v7_fixed=v7_fixed, v7_latest=v7_latest)

        targets = [
            BranchTarget(BRANCH_V6, v6_version, is_v6=True, prune=True),
            BranchTarget(BRANCH_V7_FIXED, v7_fixed, is_v6=False, prune=False),
            BranchTarget(BRANCH_V7_LATEST, v7_latest, is_v6=False, prune=True),
        ]

        result = SyncResult(SyncStatus.SUCCESS)
        for target in targets:
            checkpoint()
            if not self.needs_work(target):
                logger.info("version already present and complete", branch=target.branch, version=target.version)
                result.versions.append(f"{target.branch}:{target.version}(existing)")
                continue

            batch = self.process_version(target, checkpoint)
            result.batches.append(batch)
            result.downloaded += batch.downloaded
            self.state.set(target.branch, target.version)
            if target.prune:
                self.store.cleanup_old_versions(
                    self.store.branch_root(target.is_v6), self.keep_versions,
                    *[v for v in self.state.snapshot().values() if v],
                )
            result.versions.append(f"{target.branch}:{target.version}")

        checkpoint()
        pointer_map = build_pointer_map(v6_version, v6_build, v7_fixed, v7_fixed_build, v7_latest, v7_latest_build)
        written = self.store.write_pointer_files(pointer_map)
        logger.info("pointer files updated", count=written)

        for branch in sorted({branch_of(v7_fixed), branch_of(v7_latest)}):
            self.download_packages_csv(branch)
        self.store.write_global_changelog(v6_version, v7_fixed, v7_latest)

        checked_at = now_utc()
        self.state.last_check = checked_at
        self._save_last_check()
        self.store.append_history(HistoryEntry(checked_at, v6_version, v7_fixed, v7_latest))

        logger.info("update check completed", downloaded=result.downloaded)
        return result

    def needs_work(self, target: BranchTarget) -> bool:
        active = self.state.get(target.branch)
        return active.lower() != target.version.lower() or not self.store.is_complete(target.version, target.is_v6)

    # ----- per-version work -----

    def process_version(self, target: BranchTarget, checkpoint: Callable[[], None]) -> BatchResult:
        version_dir = self.store.version_dir(target.version, target.is_v6)
        os.makedirs(version_dir, exist_ok=True)

        filenames = self.store.expected_artifacts(target.version, target.is_v6)
        delete_prefixes = load_delete_prefixes(self.config_dir) if target.is_v6 else None
        logger.info("processing version", branch=target.branch, version=target.version, files=len(filenames))

        batch = BatchResult(target.branch, target.version)
        if filenames:
            with ThreadPoolExecutor(max_workers=len(filenames), thread_name_prefix="download") as pool:
                futures = [
                    pool.submit(self.download_artifact, target, name, version_dir, delete_prefixes, checkpoint)
                    for name in filenames
                ]
                batch.results = [future.result() for future in futures]

        self.download_changelog(target.version, version_dir)

        logger.info("version processing completed", version=target.version,
                    downloaded=batch.downloaded, total=len(filenames), failed=len(batch.failures))
        return batch

    def download_artifact(self, target: BranchTarget, filename: str, version_dir: str,
                          delete_prefixes: Optional[List[str]], checkpoint: Callable[[], None]) -> DownloadResult:
        path = os.path.join(version_dir, filename)
        url = self.upstream.artifact_url(target.version, filename)
        is_bundle = target.is_v6 and filename.lower().endswith(".zip")

        if os.path.isfile(path) and os.path.getsize(path) > 0:
            logger.debug("file already exists", file=filename)
            if is_bundle:
                archive.process_bundle(path, version_dir)
            return DownloadResult(filename, url, DownloadOutcome.EXISTING, os.path.getsize(path))

        checkpoint()
        if not self.upstream.file_exists(url):
            logger.warning("file not found on server", url=url)
            return DownloadResult(filename, url, DownloadOutcome.MISSING_UPSTREAM, reason="not published")

        partial_path = path + ".part"
        try:
            logger.info("downloading", file=filename)
            data = self.upstream.download_bytes(url, checkpoint)
            with open(partial_path, "wb") as f:
                f.write(data)
            os.replace(partial_path, path)
        except (SyncCancelled, DeadlineExceeded):
            self._discard(partial_path)
            raise
        except Exception as e:
            logger.error("error downloading", file=filename, error=str(e))
            self._discard(partial_path)
            self._discard(path)
            download_failures_total.labels(target.branch).inc()
            return DownloadResult(filename, url, DownloadOutcome.FAILED, reason=str(e))

        size = len(data)
        self.state.record_download(size)
        files_downloaded_total.labels(target.branch).inc()
        bytes_downloaded_total.labels(target.branch).inc(size)
        logger.info("downloaded", file=filename, size_mb=to_mb(size))

        if is_bundle:
            archive.process_bundle(path, version_dir, delete_prefixes)

        return DownloadResult(filename, url, DownloadOutcome.DOWNLOADED, size)

    @staticmethod
    def _discard(path: str):
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning("could not remove partial file", path=path, error=str(e))

    def download_changelog(self, version: str, version_dir: str) -> bool:
        path = os.path.join(version_dir, CHANGELOG_FILE_NAME)
        if os.path.isfile(path) and os.path.getsize(path) > 0:
            logger.debug("changelog already exists", version=version)
            return False
        try:
            text = self.upstream.download_text(self.upstream.changelog_url(version))
            if text is None:
                return False
            safe_write_text(path, text)
        except (requests.exceptions.RequestException, OSError) as e:
            logger.warning("failed to download changelog", version=version, error=str(e))
            return False
        logger.info("downloaded changelog", version=version)
        return True

    def download_packages_csv(self, branch: str) -> bool:
        if not branch:
            return False
        path = self.store.packages_csv_path(branch)
        if os.path.isfile(path) and os.path.getsize(path) > 0:
            logger.debug("packages.csv already exists", branch=branch)
            return False
        try:
            text = self.upstream.download_text(self.upstream.packages_csv_url(branch))
            if text is None:
                logger.info("packages.csv not available, normal for fixed or old branches", branch=branch)
                return False
            safe_write_text(path, text)
        except (requests.exceptions.RequestException, OSError) as e:
            logger.warning("failed to download packages.csv", branch=branch, error=str(e))
            return False
        logger.info("saved packages.csv", branch=branch, path=path)
        return True

    # ----- last check -----

    def _load_last_check(self):
        data = read_json(self.last_check_file)
        if isinstance(data, dict):
            last_check = ensure_utc(data.get("lastCheck"))
            if last_check:
                self.state.last_check = last_check
                logger.info("loaded last check time", last_check=last_check.isoformat())

    def _save_last_check(self):
        try:
            safe_write_json(self.last_check_file, {"lastCheck": self.state.last_check.isoformat()})
        except OSError as e:
            logger.warning("error saving last check time", error=str(e))
