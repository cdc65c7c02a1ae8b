"""
System Routes - manual update check, status, diagnostics, health and metrics
"""
import os
import socket

import psutil
from flask import Blueprint

from rosmirror.api_responses import ErrorCode, error_response, handle_api_errors, success_response
from rosmirror.constants import BUILD_VERSION
from rosmirror.metrics import metrics_response
from rosmirror.routes import get_services
from rosmirror.sync import SyncStatus
from rosmirror.utils import format_size_py, isoformat_or_none, now_utc

system_bp = Blueprint("system", __name__, url_prefix="/api")

# Non-API routes
system_web_bp = Blueprint("system_web", __name__)

# status -> (http status, error code, message)
SYNC_ERRORS = {
    SyncStatus.ALREADY_IN_PROGRESS: (409, ErrorCode.UPDATE_IN_PROGRESS, "Update check already in progress"),
    SyncStatus.NETWORK_UNAVAILABLE: (503, ErrorCode.NETWORK_UNAVAILABLE,
                                     "Upstream servers are unreachable, serving cached versions"),
    SyncStatus.NETWORK_ERROR: (503, ErrorCode.NETWORK_ERROR, "Network error while checking for updates"),
    SyncStatus.FETCH_FAILED: (503, ErrorCode.FETCH_FAILED, "Could not fetch version information from upstream"),
    SyncStatus.CANCELLED: (503, ErrorCode.CANCELLED, "Update check was cancelled"),
    SyncStatus.TIMEOUT: (504, ErrorCode.TIMEOUT, "Update check timed out"),
    SyncStatus.ERROR: (500, ErrorCode.INTERNAL_ERROR, "Unexpected error during update check"),
}


@system_bp.post("/update-check")
@handle_api_errors
def update_check_api():
    """Run one sync cycle now"""
    result = get_services().orchestrator.run()

    if result.status != SyncStatus.SUCCESS:
        status_code, code, message = SYNC_ERRORS[result.status]
        return error_response(code, message=message, status_code=status_code, log_error=False)

    message = (f"Downloaded {result.downloaded} files" if result.downloaded
               else "All versions are up to date")
    data = result.to_dict()
    data["timestamp"] = now_utc().isoformat()
    return success_response(data=data, message=message)


@system_bp.route("/status")
@handle_api_errors
def status_api():
    services = get_services()
    process = psutil.Process(os.getpid())
    memory = process.memory_info().rss
    uptime = now_utc() - services.started_at

    return success_response(data={
        "version": BUILD_VERSION,
        "uptimeSeconds": int(uptime.total_seconds()),
        "memoryMB": round(memory / 1024 / 1024, 2),
        "memory": format_size_py(memory),
        "cpuPercent": process.cpu_percent(interval=None),
        "activeVersions": services.state.snapshot(),
        "diskUsage": services.store.disk_usage(),
        "downloadedFiles": services.state.downloaded_files,
        "downloadedBytes": services.state.downloaded_bytes,
        "lastCheck": isoformat_or_none(services.state.last_check),
        "updateInProgress": services.orchestrator.is_running,
        "allowedArches": services.arches.get(),
    })


@system_bp.route("/diagnostics")
@handle_api_errors
def diagnostics_api():
    """Connectivity probe with the short diagnostics timeout"""
    services = get_services()
    network = services.diagnostics_client().diagnose()
    return success_response(data={
        "timestampUtc": now_utc().isoformat(),
        "network": network,
        "versions": services.store.versions_info(),
        "schedule": services.schedule.status(),
    })


@system_web_bp.route("/health")
@handle_api_errors
def health_check_api():
    services = get_services()
    checks = {
        "timestamp": now_utc().isoformat(),
        "version": BUILD_VERSION,
        "hostname": socket.gethostname(),
        "store": "ok" if os.path.isdir(services.store.root) else "missing",
        "scheduler": "running" if services.scheduler and services.scheduler.scheduler.running else "stopped",
    }

    try:
        disk = psutil.disk_usage(services.store.root)
        checks["disk_free_gb"] = round(disk.free / (1024**3), 2)
        checks["disk_percent"] = disk.percent
    except OSError as e:
        checks["disk"] = f"error: {str(e)}"

    overall_status = "healthy" if checks["store"] == "ok" else "unhealthy"
    status_code = 200 if overall_status == "healthy" else 503
    return success_response(data={"status": overall_status, "checks": checks}, status_code=status_code)


@system_web_bp.route("/metrics")
def metrics_api():
    return metrics_response()
