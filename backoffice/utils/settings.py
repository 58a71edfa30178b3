"""Access to application settings from service code."""
from flask import current_app, has_app_context


def get_setting(name, default=None):
    """Read a config value, falling back to default outside an app context."""
    if not has_app_context():
        return default
    return current_app.config.get(name, default)
