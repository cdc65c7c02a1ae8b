from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from flask import Response

# Sync Metrics
sync_runs_total = Counter("rosmirror_sync_runs_total", "Total sync runs by final status", ["status"])

sync_duration_seconds = Histogram(
    "rosmirror_sync_duration_seconds", "Sync run duration",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600),
)

SYNC_IN_PROGRESS = Gauge("rosmirror_sync_in_progress", "1 while a sync run holds the single-flight guard")

# Download Metrics
files_downloaded_total = Counter("rosmirror_files_downloaded_total", "Artifacts downloaded", ["branch"])

bytes_downloaded_total = Counter("rosmirror_bytes_downloaded_total", "Artifact bytes downloaded", ["branch"])

download_failures_total = Counter("rosmirror_download_failures_total", "Artifact downloads that failed", ["branch"])

# Store Metrics
versions_removed_total = Counter("rosmirror_versions_removed_total", "Version directories removed by retention")

cleanup_freed_bytes_total = Counter("rosmirror_cleanup_freed_bytes_total", "Bytes freed by version removal")


def metrics_response():
    """Render the default registry for the /metrics endpoint"""
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)
