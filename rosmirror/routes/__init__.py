"""
Routes package - Flask blueprints for the device-facing mirror and the admin API
"""
from flask import current_app

EXTENSION_KEY = "rosmirror"


def get_services():
    """Services container attached by create_app()"""
    return current_app.extensions[EXTENSION_KEY]


def register_blueprints(app):
    from rosmirror.routes.files import files_bp
    from rosmirror.routes.settings import settings_bp
    from rosmirror.routes.system import system_bp, system_web_bp
    from rosmirror.routes.versions import versions_bp

    app.register_blueprint(files_bp)
    app.register_blueprint(versions_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(system_bp)
    app.register_blueprint(system_web_bp)
