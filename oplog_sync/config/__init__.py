from .settings import (
    Settings,
    SourceSettings,
    SinkSettings,
    ReplicationSettings,
    LoggingSettings,
    MetricsSettings,
    get_settings,
    reload_settings,
    load_collections,
)

__all__ = [
    "Settings",
    "SourceSettings",
    "SinkSettings",
    "ReplicationSettings",
    "LoggingSettings",
    "MetricsSettings",
    "get_settings",
    "reload_settings",
    "load_collections",
]
