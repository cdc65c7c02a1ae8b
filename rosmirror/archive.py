"""
Archive Post-Processor for v6 all_packages bundles

Strips unwanted packages from the downloaded zip by filename prefix and
extracts the remaining *.npk files next to it in the version directory.
"""
import os
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

logger = structlog.get_logger("archive")


@dataclass
class ArchiveResult:
    removed: List[str] = field(default_factory=list)
    extracted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _matches_prefix(filename: str, prefixes: List[str]) -> bool:
    lower = filename.lower()
    return any(lower.startswith(prefix.lower()) for prefix in prefixes)


def filter_bundle(zip_path: str, delete_prefixes: List[str]) -> List[str]:
    """
    Remove every entry whose file name starts with one of `delete_prefixes` and
    re-pack the archive in place. Returns the removed names.
    """
    if not delete_prefixes:
        return []

    scratch_dir = tempfile.mkdtemp(prefix="rosmirror-bundle-")
    removed = []
    try:
        with zipfile.ZipFile(zip_path) as archive:
            archive.extractall(scratch_dir)

        for root, _dirs, files in os.walk(scratch_dir):
            for name in files:
                if _matches_prefix(name, delete_prefixes):
                    os.remove(os.path.join(root, name))
                    removed.append(name)
                    logger.info("removing file from archive", file=name, archive=os.path.basename(zip_path))

        if not removed:
            return removed

        repacked_path = zip_path + ".repack"
        with zipfile.ZipFile(repacked_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for root, _dirs, files in os.walk(scratch_dir):
                for name in sorted(files):
                    full_path = os.path.join(root, name)
                    archive.write(full_path, os.path.relpath(full_path, scratch_dir))
        os.remove(zip_path)
        os.replace(repacked_path, zip_path)

        logger.info("archive cleanup completed", archive=os.path.basename(zip_path), removed=len(removed))
        return removed
    finally:
        shutil.rmtree(scratch_dir, ignore_errors=True)


def extract_npk(zip_path: str, destination_dir: str) -> List[str]:
    """Copy every *.npk entry into `destination_dir`, flattened to its base name."""
    os.makedirs(destination_dir, exist_ok=True)
    extracted = []
    with zipfile.ZipFile(zip_path) as archive:
        for entry in archive.infolist():
            if entry.is_dir() or not entry.filename.lower().endswith(".npk"):
                continue
            name = os.path.basename(entry.filename.replace("\\", "/"))
            if not name:
                continue
            with archive.open(entry) as source, open(os.path.join(destination_dir, name), "wb") as target:
                shutil.copyfileobj(source, target)
            extracted.append(name)

    logger.info("extracted npk files", count=len(extracted), archive=os.path.basename(zip_path),
                directory=destination_dir)
    return extracted


def process_bundle(zip_path: str, destination_dir: str,
                   delete_prefixes: Optional[List[str]] = None) -> ArchiveResult:
    """Filter then extract. Best effort: failures are logged and reported, never raised."""
    result = ArchiveResult()
    if not os.path.isfile(zip_path):
        result.errors.append(f"{zip_path} does not exist")
        return result

    if delete_prefixes:
        try:
            result.removed = filter_bundle(zip_path, delete_prefixes)
        except (OSError, zipfile.BadZipFile) as e:
            logger.error("error cleaning up zip file", path=zip_path, error=str(e))
            result.errors.append(f"filter: {e}")

    try:
        result.extracted = extract_npk(zip_path, destination_dir)
    except (OSError, zipfile.BadZipFile) as e:
        logger.error("error extracting npk files", path=zip_path, error=str(e))
        result.errors.append(f"extract: {e}")

    return result
