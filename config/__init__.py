"""
Engine Configuration Package.

This package contains the settings manager used by the workflow engine.
"""

from config.manager import EngineSettingsManager, settings_manager
from config.types import EngineSettings

__all__ = [
    "EngineSettingsManager",
    "settings_manager",
    "EngineSettings",
]
