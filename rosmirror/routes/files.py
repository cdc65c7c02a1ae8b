"""
File Routes - what RouterOS devices actually fetch

    GET|HEAD /routeros/<filename>
    GET|HEAD /routeros/<version>/<filename>
"""
from flask import Blueprint, Response, jsonify, send_file

from rosmirror.resolver import Forbidden, NotFound, PhysicalFile, SynthesizedText
from rosmirror.routes import get_services

files_bp = Blueprint("files", __name__, url_prefix="/routeros")


def _respond(resolution):
    if isinstance(resolution, SynthesizedText):
        return Response(resolution.text, content_type=resolution.content_type)

    if isinstance(resolution, PhysicalFile):
        return send_file(
            resolution.path,
            mimetype=resolution.content_type,
            as_attachment=resolution.as_attachment,
            download_name=resolution.filename,
            conditional=True,
        )

    if isinstance(resolution, Forbidden):
        return jsonify({"error": "Access forbidden", "requested": f"routeros/{resolution.requested}"}), 403

    if isinstance(resolution, NotFound):
        return jsonify({"error": resolution.reason, "requested": f"routeros/{resolution.requested}"}), 404

    raise TypeError(f"Unexpected resolution: {resolution!r}")


@files_bp.route("/<filename>", methods=["GET", "HEAD"])
def serve_root_file(filename):
    return _respond(get_services().resolver.resolve(None, filename))


# <path:> so that extra slashes reach the resolver and get rejected there
@files_bp.route("/<version>/<path:filename>", methods=["GET", "HEAD"])
def serve_versioned_file(version, filename):
    return _respond(get_services().resolver.resolve(version, filename))
