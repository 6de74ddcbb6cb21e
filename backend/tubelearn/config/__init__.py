"""Configuration package."""

from tubelearn.config.processing import (
    ProcessingSettings,
    get_processing_settings,
    processing_settings,
)
from tubelearn.config.settings import (
    Settings,
    get_settings,
    load_yaml_config,
    settings,
    yaml_config,
)

__all__ = [
    # Processing settings
    "ProcessingSettings",
    "get_processing_settings",
    "processing_settings",
    # Application settings
    "Settings",
    "get_settings",
    "load_yaml_config",
    "settings",
    "yaml_config",
]
