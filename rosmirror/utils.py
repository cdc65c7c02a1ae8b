import logging
import re
import threading
import json
import os
import tempfile
from datetime import datetime, timezone

# Global lock for all JSON writes in this process
_json_write_lock = threading.Lock()

_VERSION_RE = re.compile(r'^\d+(\.\d+){1,3}$')


# Custom logging formatter to support colors
class ColoredFormatter(logging.Formatter):
    COLORS = {
        'DEBUG': '\033[94m',   # Blue
        'INFO': '\033[92m',    # Green
        'WARNING': '\033[93m', # Yellow
        'ERROR': '\033[91m',   # Red
        'CRITICAL': '\033[95m' # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        return super().format(record)


# Filter to remove date from http access logs
class FilterRemoveDateFromWerkzeugLogs(logging.Filter):
    # '192.168.0.102 - - [30/Jun/2024 01:14:03] "%s" %s %s' -> '192.168.0.102 - "%s" %s %s'
    pattern: re.Pattern = re.compile(r' - - \[.+?] "')

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.pattern.sub(' - "', record.msg)
        return True


def safe_write_json(path, data, **dump_kwargs):
    with _json_write_lock:
        dirpath = os.path.dirname(path) or "."
        os.makedirs(dirpath, exist_ok=True)
        options = {'ensure_ascii': False, 'indent': 2}
        options.update(dump_kwargs)

        with tempfile.NamedTemporaryFile("w", dir=dirpath, delete=False, encoding="utf-8") as tmp:
            tmp_path = tmp.name
            json.dump(data, tmp, **options)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, path)


def safe_write_text(path, text):
    """Replace `path` with `text` so readers only ever see the old or the new content."""
    dirpath = os.path.dirname(path) or "."
    os.makedirs(dirpath, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile("w", dir=dirpath, delete=False, encoding="utf-8", newline="\n")
    tmp_path = tmp.name
    try:
        with tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def read_json(path, default=None):
    """Read a JSON document, returning `default` when missing or unreadable."""
    if not os.path.exists(path):
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logging.getLogger('main').warning(f"Could not read {path}: {e}")
        return default


def format_size_py(size):
    if size is None: return "0 B"
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"


def to_mb(size):
    return f"{size / 1024 / 1024:.2f}"


def dir_size(path):
    """Total size in bytes of every file below `path`."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
    return total


def parse_version(name):
    """
    Parse a dotted numeric version ("7.20.4") into a comparable tuple.

    Returns None for anything that is not 2 to 4 purely numeric components,
    e.g. "7.21rc1" or "LATEST.6".
    """
    if not name or not _VERSION_RE.match(name):
        return None
    return tuple(int(part) for part in name.split('.'))


def branch_of(version):
    """7.20.4 -> 7.20"""
    if not version:
        return version
    parts = version.split('.')
    return f"{parts[0]}.{parts[1]}" if len(parts) >= 2 else version


def now_utc():
    """Returns current datetime in UTC (aware)"""
    return datetime.now(timezone.utc)


def ensure_utc(dt):
    """
    Ensure a datetime object is aware and in UTC.
    Handles ISO strings, None, and naive datetimes.
    """
    if dt is None:
        return None

    if isinstance(dt, str):
        try:
            dt = datetime.fromisoformat(dt.replace('Z', '+00:00'))
        except (ValueError, TypeError, AttributeError):
            return None

    if not hasattr(dt, 'tzinfo'):
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def isoformat_or_none(dt):
    return dt.isoformat() if dt else None


def is_safe_segment(name):
    """False for empty names and anything that could step outside its directory."""
    return bool(name) and '..' not in name and '/' not in name and '\\' not in name
