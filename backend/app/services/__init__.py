"""Business logic services for the ClinicFlow settings API.

This package intentionally avoids eager imports so that importing the error
taxonomy does not create the database engine.
"""

from importlib import import_module

__all__ = [
    # Readiness
    "ReadinessTracker",
    "ReadinessStatus",
    "SQLConfigurationLookup",
    "InMemoryConfigurationLookup",
    # Email
    "EmailConfigWorkflow",
    "SQLEmailSettingsRepository",
    "InMemoryEmailSettingsRepository",
    "HTTPEmailDeliveryProvider",
    "send_notification",
    "render_email_content",
    # Sessions
    "ActorSession",
    "ActorSessionRegistry",
]

_LAZY_IMPORTS = {
    "ReadinessTracker": ("app.services.readiness", "ReadinessTracker"),
    "ReadinessStatus": ("app.services.readiness", "ReadinessStatus"),
    "SQLConfigurationLookup": ("app.services.readiness", "SQLConfigurationLookup"),
    "InMemoryConfigurationLookup": (
        "app.services.readiness",
        "InMemoryConfigurationLookup",
    ),
    "EmailConfigWorkflow": ("app.services.email_settings", "EmailConfigWorkflow"),
    "SQLEmailSettingsRepository": (
        "app.services.email_settings",
        "SQLEmailSettingsRepository",
    ),
    "InMemoryEmailSettingsRepository": (
        "app.services.email_settings",
        "InMemoryEmailSettingsRepository",
    ),
    "HTTPEmailDeliveryProvider": ("app.services.email", "HTTPEmailDeliveryProvider"),
    "send_notification": ("app.services.email", "send_notification"),
    "render_email_content": ("app.services.email", "render_email_content"),
    "ActorSession": ("app.services.session", "ActorSession"),
    "ActorSessionRegistry": ("app.services.session", "ActorSessionRegistry"),
}


def __getattr__(name: str):
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)
