from pathlib import Path
from typing import Dict, Any, Optional, List
from config.types import EngineSettings
import logging
import os

ENV_PREFIX = "AGENTFLOW_"


class EngineSettingsManager:
    """
    Settings manager for the workflow engine.

    Holds the tunables used by the engine (retry backoff, script limits,
    interactive timeouts, loop bounds). Every setting has a default and can be
    overridden from a .env file or from the process environment through the
    ``AGENTFLOW_<SETTING>`` variable.
    """

    _instance = None

    # Default settings with their types
    DEFAULT_SETTINGS = {
        # Retry settings
        "retry_backoff_cap_seconds": (30.0, float),
        "retry_jitter_max_seconds": (1.0, float),
        "default_max_attempts": (1, int),
        # Script step settings
        "script_timeout_seconds": (30.0, float),
        "script_max_size_bytes": (10240, int),
        "script_shell": ("bash", str),
        "script_env_prefix": ("AGENT_", str),
        # Interactive tools
        "interactive_timeout_seconds": (300.0, float),
        # Loop step settings
        "loop_default_max_iterations": (10, int),
        "loop_max_iterations_limit": (100, int),
        # Execution settings
        "parallel_execution": (True, bool),
        # LLM with tools settings
        "llm_tools_max_calls": (3, int),
        "llm_tools_max_file_size": (10240, int),
    }

    # Each setting can be set via its prefixed uppercase env var
    ENV_MAPPING = {
        f"{ENV_PREFIX}{setting.upper()}": setting for setting in DEFAULT_SETTINGS.keys()
    }

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize settings with default values"""
        self.env_variables: Dict[str, str] = {}
        self.settings: Dict[str, Any] = {}
        self.env_file_path: Optional[Path] = None
        self.logger = logging.getLogger(__name__)

        for key, (default_value, _) in self.DEFAULT_SETTINGS.items():
            self.settings[key] = default_value

        self.load()

    def _convert_value(self, value: str, target_type: type) -> Any:
        """Convert string value to target type"""
        if target_type == bool:
            return value.strip().lower() in ("true", "1", "yes", "on")
        return target_type(value)

    def _apply_variable(self, key: str, value: str):
        """Store a variable and update the mapped setting, if any"""
        self.env_variables[key] = value

        setting_name = self.ENV_MAPPING.get(key)
        if setting_name is None:
            return

        _, target_type = self.DEFAULT_SETTINGS[setting_name]
        try:
            self.settings[setting_name] = self._convert_value(value, target_type)
        except ValueError:
            self.logger.warning(
                f"Ignoring invalid value for {key}: {value!r} "
                f"(expected {target_type.__name__})"
            )

    def _env_file_candidates(self) -> List[Path]:
        """Locations probed for a .env file, in order"""
        env_file_paths = [Path.cwd() / ".env"]

        try:
            env_file_paths.append(Path.home() / ".env")
        except (RuntimeError, OSError):
            # Skip home directory if it can't be determined
            pass

        return env_file_paths

    def _load_from_env_file(self):
        """Find and load variables from a .env file"""
        for env_path in self._env_file_candidates():
            if env_path.exists() and env_path.is_file():
                self.logger.debug(f"Loading environment from: {env_path}")
                self._parse_env_file(env_path)
                self.env_file_path = env_path
                return

    def _parse_env_file(self, env_file_path: Path):
        """Parse a .env file and load variables into settings"""
        try:
            with open(env_file_path, "r") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, value = line.split("=", 1)
                        key = key.strip()
                        value = value.strip()

                        # Remove quotes if present
                        if (value.startswith('"') and value.endswith('"')) or (
                            value.startswith("'") and value.endswith("'")
                        ):
                            value = value[1:-1]

                        self._apply_variable(key, value)

        except OSError as e:
            self.logger.warning(f"Error parsing .env file {env_file_path}: {e}")

    def load(self):
        """Load settings from the .env file and the OS environment"""
        self._load_from_env_file()

        for key, value in os.environ.items():
            if key.startswith(ENV_PREFIX):
                self._apply_variable(key, value)

        return self

    def get_setting(self, name: str, default: Any = None) -> Any:
        """Get a setting value by name"""
        return self.settings.get(name, default)

    def get_engine_settings(self) -> EngineSettings:
        """Return a typed snapshot of the current settings"""
        return EngineSettings(**self.settings)


# Create a global instance
settings_manager = EngineSettingsManager()
