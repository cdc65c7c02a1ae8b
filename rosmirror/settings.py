"""
RouterOS Mirror - Settings

settings.yaml holds server/upstream/sync options. The allowed architecture
list and the archive delete-prefixes live in their own JSON files so the
admin UI can edit them without touching the YAML.
"""
import copy
import logging
import os
import threading
from typing import Dict, List, Optional

import yaml

from rosmirror.constants import (
    ALLOWED_ARCHES_FILE_NAME,
    CONFIG_DIR,
    CONFIG_FILE_NAME,
    DEFAULT_ALLOWED_ARCHES,
    DEFAULT_SETTINGS,
    DELETE_PREFIXES_FILE_NAME,
)
from rosmirror.utils import read_json, safe_write_json

# Retrieve main logger
logger = logging.getLogger("main")

# Cache variable, keyed by settings file path
_cached_settings: Dict[str, Dict] = {}


def _merge_defaults(settings: Dict) -> Dict:
    merged_settings = copy.deepcopy(DEFAULT_SETTINGS)
    for section, values in settings.items():
        if isinstance(values, dict) and section in merged_settings and isinstance(merged_settings[section], dict):
            merged_settings[section].update(values)
        else:
            merged_settings[section] = values
    return merged_settings


def load_settings(config_dir: str = CONFIG_DIR, force: bool = False) -> Dict:
    config_file = os.path.join(config_dir, CONFIG_FILE_NAME)

    if config_file in _cached_settings and not force:
        return _cached_settings[config_file]

    if os.path.exists(config_file):
        logger.debug(f"Reading configuration file: {config_file}")
        with open(config_file, "r") as yaml_file:
            settings = yaml.safe_load(yaml_file) or {}
        settings = _merge_defaults(settings)
    else:
        settings = copy.deepcopy(DEFAULT_SETTINGS)
        os.makedirs(config_dir, exist_ok=True)
        with open(config_file, "w") as yaml_file:
            yaml.dump(settings, yaml_file)
        logger.info(f"Created default configuration at {config_file}")

    _cached_settings[config_file] = settings
    return settings


def normalize_arches(arches) -> List[str]:
    normalized = []
    for arch in arches or []:
        if not isinstance(arch, str):
            continue
        item = arch.strip().lower()
        if item and item not in normalized:
            normalized.append(item)
    return normalized


class ArchitectureConfig:
    """Persisted set of architectures the mirror fetches and serves."""

    def __init__(self, config_dir: str = CONFIG_DIR):
        self.arches_file = os.path.join(config_dir, ALLOWED_ARCHES_FILE_NAME)
        self._lock = threading.Lock()
        self._arches = self._load()

    def _load(self) -> List[str]:
        data = read_json(self.arches_file)
        if isinstance(data, list):
            normalized = normalize_arches(data)
            if normalized:
                logger.info(f"Loaded {len(normalized)} allowed architectures from {self.arches_file}")
                return normalized
        elif data is not None:
            logger.warning(f"Ignoring malformed {self.arches_file}, using defaults")

        logger.info(f"Using default allowed architectures: {', '.join(DEFAULT_ALLOWED_ARCHES)}")
        return list(DEFAULT_ALLOWED_ARCHES)

    def get(self) -> List[str]:
        return list(self._arches)

    def update(self, arches) -> List[str]:
        """Replace the allowed list. An empty selection falls back to the defaults."""
        if arches is None:
            raise ValueError("Architecture list is required")

        normalized = normalize_arches(arches)
        if not normalized:
            normalized = list(DEFAULT_ALLOWED_ARCHES)

        with self._lock:
            safe_write_json(self.arches_file, normalized)
            self._arches = normalized

        logger.info(f"Allowed architectures updated: {', '.join(normalized)}")
        return list(normalized)


def load_delete_prefixes(config_dir: str = CONFIG_DIR) -> List[str]:
    """Read {"deletePrefixes": [...]} fresh on every call."""
    path = os.path.join(config_dir, DELETE_PREFIXES_FILE_NAME)
    data: Optional[Dict] = read_json(path)
    if not isinstance(data, dict):
        return []

    prefixes = [p for p in data.get("deletePrefixes") or [] if isinstance(p, str) and p]
    logger.info(f"Loaded delete prefixes: {', '.join(prefixes)}")
    return prefixes
