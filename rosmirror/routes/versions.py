"""
Version Routes - browse, activate, remove and download mirrored versions
"""
from flask import Blueprint, Response, request, send_file

from rosmirror.api_responses import handle_api_errors, not_found_response, success_response
from rosmirror.constants import TEXT_CONTENT_TYPE
from rosmirror.exceptions import ConflictException, ForbiddenException, NotFoundException
from rosmirror.resolver import content_type_for
from rosmirror.routes import get_services
from rosmirror.utils import is_safe_segment

versions_bp = Blueprint("versions", __name__, url_prefix="/api")


@versions_bp.route("/versions")
@handle_api_errors
def get_versions_api():
    """Mirrored versions per branch and the active ones"""
    return success_response(data=get_services().store.versions_info())


@versions_bp.route("/versions/history")
@handle_api_errors
def get_versions_history_api():
    take = request.args.get("take", default=50, type=int)
    return success_response(data=get_services().store.history(take))


@versions_bp.post("/set-active-version/<version>")
@handle_api_errors
def set_active_version_api(version):
    services = get_services()
    if not services.store.set_active(version):
        raise NotFoundException(f"Version '{version}' not found")
    return success_response(data=services.state.snapshot(), message=f"Version {version} is now active")


@versions_bp.delete("/remove-version/<version>")
@handle_api_errors
def remove_version_api(version):
    services = get_services()
    if services.state.is_active(version):
        raise ConflictException(f"Version {version} is active and cannot be removed")
    if not services.store.remove(version):
        return not_found_response("Version", version)
    return success_response(message=f"Version {version} removed")


@versions_bp.route("/download/<version>/<filename>")
@handle_api_errors
def download_file_api(version, filename):
    """Admin download; ETag / If-None-Match handled by send_file"""
    if not (is_safe_segment(version) and is_safe_segment(filename)):
        raise ForbiddenException(f"Invalid path: {version}/{filename}")

    path = get_services().store.artifact_path(version, filename)
    if not path:
        return not_found_response("File", f"{version}/{filename}")

    return send_file(
        path,
        mimetype=content_type_for(filename),
        as_attachment=True,
        download_name=filename,
        conditional=True,
        etag=True,
    )


@versions_bp.route("/changelog")
@handle_api_errors
def get_global_changelog_api():
    text = get_services().store.global_changelog_text()
    if text is None:
        return not_found_response("Changelog")
    return Response(text, content_type=TEXT_CONTENT_TYPE)


@versions_bp.route("/changelog/<version>")
@handle_api_errors
def get_version_changelog_api(version):
    if not is_safe_segment(version):
        raise ForbiddenException(f"Invalid version: {version}")
    text = get_services().store.changelog_text(version)
    if text is None:
        return not_found_response("Changelog", version)
    return Response(text, content_type=TEXT_CONTENT_TYPE)
