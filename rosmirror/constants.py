import os

APP_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_DIR = os.environ.get('ROSMIRROR_CONFIG_DIR', os.path.join(APP_DIR, 'config'))
DATA_DIR = os.environ.get('ROSMIRROR_DATA_DIR', os.path.join(APP_DIR, 'data'))
STORE_DIRNAME = 'routeros'

CONFIG_FILE_NAME = 'settings.yaml'
ALLOWED_ARCHES_FILE_NAME = 'allowed_arches.json'
DELETE_PREFIXES_FILE_NAME = 'delete_prefixes.json'
SCHEDULE_FILE_NAME = 'schedule.json'
LAST_CHECK_FILE_NAME = 'last_check.json'
VERSIONS_FILE_NAME = 'versions.json'
CHANGELOG_FILE_NAME = 'CHANGELOG'
PACKAGES_CSV_NAME = 'packages.csv'
PACKAGES_DIRNAME = 'packages'

BUILD_VERSION = '20261018_0900'

DEFAULT_ALLOWED_ARCHES = [
    'arm',
    'arm64',
    'mipsbe',
    'mmips',
    'smips',
    'tile',
    'ppc',
]

# Branch identifiers
BRANCH_V6 = 'v6'
BRANCH_V7_FIXED = 'v7-fixed'
BRANCH_V7_LATEST = 'v7-latest'

HISTORY_LIMIT = 100
HISTORY_TAKE_MAX = 500
DISK_USAGE_CACHE_SECONDS = 30
SCHEDULE_WINDOW_MINUTES = 5

DEFAULT_SETTINGS = {
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
    },
    "upstream": {
        "upgrade_url": "https://upgrade.mikrotik.com/routeros",
        "download_url": "https://download.mikrotik.com/routeros",
        "probe_url": "https://upgrade.mikrotik.com/routeros/LATEST.6",
        "diagnostics_url": "https://upgrade.mikrotik.com/",
        "timeout_seconds": 600,
        "diagnostics_timeout_seconds": 5,
        "user_agent": "RouterOS-Mirror/1.0",
    },
    "sync": {
        "v7_fixed_version": "7.12.1",
        "keep_versions": 3,
        "prune_unparseable": True,
        "deadline_seconds": None,
    },
}

CONTENT_TYPES = {
    '.npk': 'application/octet-stream',
    '.zip': 'application/zip',
    '.txt': 'text/plain; charset=utf-8',
    '.log': 'text/plain; charset=utf-8',
    '.csv': 'text/csv; charset=utf-8',
}
DEFAULT_CONTENT_TYPE = 'application/octet-stream'
TEXT_CONTENT_TYPE = 'text/plain; charset=utf-8'
