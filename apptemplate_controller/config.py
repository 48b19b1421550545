"""Configuration management for the AppTemplate controller."""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from apptemplate_controller.exceptions import ConfigurationError
from apptemplate_controller.renderer import VariablePolicy

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class ControllerConfig:
    """Controller settings from defaults, a YAML file and environment variables."""

    DEFAULT_CONFIG_PATH = Path.home() / ".apptemplate-controller" / "config.yaml"

    DEFAULT_CONFIG = {
        "group": "myapp.domain.com",
        "version": "v1",
        "plural": "apptemplates",
        "configs_dir": "./configs",
        "retry_delay": 5.0,
        "watch_timeout": 300,
        "variable_policy": "permissive",
        "include_environment": True,
        "report_status": True,
        "kubeconfig": None,
        "cluster_context": None,
        "log_level": "INFO",
    }

    ENV_VARS = {
        "group": "RESOURCE_GROUP",
        "version": "API_VERSION",
        "plural": "RESOURCE_NAME",
        "configs_dir": "CONFIGS_DIR",
        "retry_delay": "WATCH_RETRY_DELAY",
        "watch_timeout": "WATCH_TIMEOUT_SECONDS",
        "variable_policy": "VARIABLE_POLICY",
        "include_environment": "INCLUDE_ENVIRONMENT",
        "report_status": "REPORT_STATUS",
        "kubeconfig": "KUBECONFIG",
        "cluster_context": "KUBE_CONTEXT",
        "log_level": "LOG_LEVEL",
    }

    def __init__(self, config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. Defaults to ~/.apptemplate-controller/config.yaml
            environ: Environment to read overrides from. Defaults to ``os.environ``

        Raises:
            ConfigurationError: If the file or any value is invalid
        """
        self.config_path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        self._explicit_path = config_path is not None
        self.environ = os.environ if environ is None else environ
        self.config = self._load_config()
        self._validate()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file, then apply environment overrides.

        Returns:
            Dictionary containing configuration values
        """
        config = self.DEFAULT_CONFIG.copy()

        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to load config from {self.config_path}: {e}", str(self.config_path))
            if not isinstance(file_config, dict):
                raise ConfigurationError(f"Config file {self.config_path} must contain a mapping",
                                         str(self.config_path))
            config.update(file_config)
        elif self._explicit_path:
            raise ConfigurationError(f"Config file {self.config_path} does not exist", str(self.config_path))

        for key, env_var in self.ENV_VARS.items():
            value = self.environ.get(env_var)
            if value:
                config[key] = value

        return config

    def _validate(self) -> None:
        self.config["retry_delay"] = self._number("retry_delay", float)
        if self.config["retry_delay"] < 0:
            raise ConfigurationError("retry_delay must not be negative")

        watch_timeout = self.config.get("watch_timeout")
        self.config["watch_timeout"] = self._number("watch_timeout", int) if watch_timeout else None

        for key in ("include_environment", "report_status"):
            self.config[key] = self._flag(key)

        try:
            VariablePolicy(str(self.config["variable_policy"]).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown variable_policy '{self.config['variable_policy']}'; use 'permissive' or 'strict'"
            )

    def _number(self, key: str, cast):
        try:
            return cast(self.config[key])
        except (TypeError, ValueError):
            raise ConfigurationError(f"{key} must be a number, got {self.config[key]!r}")

    def _flag(self, key: str) -> bool:
        value = self.config[key]
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in TRUE_VALUES:
            return True
        if text in FALSE_VALUES:
            return False
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")

    @classmethod
    def load(cls, config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None,
             **overrides: Any) -> "ControllerConfig":
        """Load configuration and apply explicit overrides, typically CLI options.

        Overrides whose value is None are ignored.
        """
        config = cls(config_path, environ)
        for key, value in overrides.items():
            if value is not None:
                config.set(key, value)
        config._validate()
        return config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self.config[key] = value

    @property
    def group(self) -> str:
        return self.get("group")

    @property
    def version(self) -> str:
        return self.get("version")

    @property
    def plural(self) -> str:
        return self.get("plural")

    @property
    def configs_dir(self) -> Path:
        """Get bundle root directory."""
        return Path(self.get("configs_dir"))

    @property
    def retry_delay(self) -> float:
        return self.get("retry_delay")

    @property
    def watch_timeout(self) -> Optional[int]:
        return self.get("watch_timeout")

    @property
    def variable_policy(self) -> VariablePolicy:
        return VariablePolicy(str(self.get("variable_policy")).lower())

    @property
    def include_environment(self) -> bool:
        return self.get("include_environment")

    @property
    def report_status(self) -> bool:
        return self.get("report_status")

    @property
    def kubeconfig(self) -> Optional[str]:
        """Get kubeconfig path."""
        return self.get("kubeconfig")

    @property
    def cluster_context(self) -> Optional[str]:
        """Get cluster context."""
        return self.get("cluster_context")

    @property
    def log_level(self) -> str:
        return str(self.get("log_level")).upper()
