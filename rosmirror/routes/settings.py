"""
Settings Routes - allowed architectures and the check schedule
"""
from flask import Blueprint, request

from rosmirror.api_responses import handle_api_errors, success_response
from rosmirror.exceptions import ValidationException
from rosmirror.routes import get_services

settings_bp = Blueprint("settings", __name__, url_prefix="/api")


@settings_bp.route("/settings/arches")
@handle_api_errors
def get_arches_api():
    return success_response(data={"arches": get_services().arches.get()})


@settings_bp.post("/settings/arches")
@handle_api_errors
def set_arches_api():
    """Accepts {"arches": [...]} or a bare list"""
    payload = request.get_json(silent=True)
    arches = payload.get("arches") if isinstance(payload, dict) else payload
    if not isinstance(arches, list):
        raise ValidationException("Expected a list of architectures")

    updated = get_services().arches.update(arches)
    return success_response(data={"arches": updated}, message="Allowed architectures updated")


@settings_bp.route("/schedule")
@handle_api_errors
def get_schedule_api():
    return success_response(data=get_services().schedule.config.to_dict())


@settings_bp.post("/schedule")
@handle_api_errors
def set_schedule_api():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationException("Expected a schedule configuration object")

    config = get_services().schedule.update_config(payload)
    return success_response(data=config.to_dict(), message="Schedule updated")


@settings_bp.route("/schedule/status")
@handle_api_errors
def get_schedule_status_api():
    return success_response(data=get_services().schedule.status())


@settings_bp.post("/schedule/pause")
@handle_api_errors
def pause_schedule_api():
    hours = request.args.get("hours", default=24, type=float)
    paused_until = get_services().schedule.pause(hours)
    return success_response(
        data={"pausedUntil": paused_until.isoformat()},
        message=f"Updates paused for {hours:g} hours",
    )


@settings_bp.post("/schedule/resume")
@handle_api_errors
def resume_schedule_api():
    get_services().schedule.resume()
    return success_response(message="Updates resumed")
