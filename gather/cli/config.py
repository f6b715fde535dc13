"""Configuration system for the gather CLI with proper precedence handling.

Configuration sources, highest precedence first:
CLI flags > environment variables > config file > auto-discovered file > defaults
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from ..capture.browser_factory import BrowserConfig
from ..capture.page_session import PageSessionConfig, WaitStrategy
from ..models.capture import OutputTarget

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class BrowserSettings(BaseModel):
    """Browser launch and viewport options."""
    width: int = Field(default=1200, ge=1, description="Viewport width in pixels")
    height: int = Field(default=800, ge=1, description="Viewport height in pixels")
    port: int = Field(default=9222, ge=1, le=65535, description="Remote debugging port")
    headless: bool = Field(default=True, description="Run browser without a window")
    no_sandbox: Optional[bool] = Field(default=None, description="Disable sandbox (auto when running as root)")


class NavigationSettings(BaseModel):
    """Navigation options."""
    timeout_ms: int = Field(default=60000, ge=1, description="Page load timeout in milliseconds")
    wait_until: str = Field(default=WaitStrategy.LOAD, description="Load state to wait for")

    @field_validator('wait_until')
    @classmethod
    def validate_wait_until(cls, v):
        if v not in WaitStrategy.ALL:
            raise ValueError(f"wait_until must be one of: {', '.join(WaitStrategy.ALL)}")
        return v


class OutputSettings(BaseModel):
    """Output files; ``false`` or empty disables an output."""
    har: Optional[str] = Field(default="capture.har", description="HAR output file")
    screenshot: Optional[str] = Field(default="capture.png", description="Screenshot file")
    events: Optional[str] = Field(default=None, description="Raw event log file")
    js_result: Optional[str] = Field(default=None, description="Script result file")

    @field_validator('har', 'screenshot', 'events', 'js_result', mode='before')
    @classmethod
    def normalize_target(cls, v):
        # YAML reads a bare `false` as a boolean
        if v is False:
            return "false"
        if isinstance(v, Path):
            return str(v)
        return v

    def target(self, name: str) -> OutputTarget:
        return OutputTarget.parse(getattr(self, name))


class ScriptSettings(BaseModel):
    """Page script options."""
    code: Optional[str] = Field(default=None, description="Script evaluated in page context")


class LoggingSettings(BaseModel):
    """Logging options."""
    level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[Path] = Field(default=None, description="Additional log file")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"level must be one of: {', '.join(LOG_LEVELS)}")
        return level


class GatherConfiguration(BaseModel):
    """Complete CLI configuration with all sections."""

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    navigation: NavigationSettings = Field(default_factory=NavigationSettings)
    outputs: OutputSettings = Field(default_factory=OutputSettings)
    script: ScriptSettings = Field(default_factory=ScriptSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Metadata
    config_file_path: Optional[Path] = Field(default=None, description="Source config file")
    loaded_from: List[str] = Field(default_factory=list, description="Configuration sources")

    def to_browser_config(self) -> BrowserConfig:
        return BrowserConfig(
            width=self.browser.width,
            height=self.browser.height,
            port=self.browser.port,
            headless=self.browser.headless,
            no_sandbox=self.browser.no_sandbox,
        )

    def to_session_config(self) -> PageSessionConfig:
        return PageSessionConfig(
            timeout_ms=self.navigation.timeout_ms,
            wait_until=self.navigation.wait_until,
            har=self.outputs.target('har'),
            screenshot=self.outputs.target('screenshot'),
            events=self.outputs.target('events'),
            js=self.script.code,
            js_result=self.outputs.target('js_result'),
        )


class ConfigurationLoader:
    """Loads and merges configuration from multiple sources with proper precedence."""

    # Environment variable prefix
    ENV_PREFIX = "GATHER_"

    # Default configuration file names (searched in order)
    DEFAULT_CONFIG_FILES = [
        "gather.yaml",
        "gather.yml",
        ".gather.yaml",
        "gather.json",
    ]

    BOOLEAN_KEYS = ('.headless', '.no_sandbox')
    INTEGER_KEYS = ('.width', '.height', '.port', '.timeout_ms')

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = environ if environ is not None else os.environ
        self.loaded_sources: List[str] = []

    def load_configuration(
        self,
        config_file: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
        search_paths: Optional[List[Path]] = None
    ) -> GatherConfiguration:
        """Load configuration with proper precedence.

        Args:
            config_file: Explicitly specified config file
            cli_overrides: CLI flag overrides (nested dict, unset flags omitted)
            search_paths: Paths to search for config files

        Returns:
            Merged configuration

        Raises:
            FileNotFoundError: If config_file does not exist
            ValueError: If a config file or environment value cannot be parsed
        """
        self.loaded_sources = ["defaults"]
        config_data: Dict[str, Any] = {}

        if config_file:
            if not config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_file}")
            config_data = self._merge_config(config_data, self._load_config_file(config_file))
            self.loaded_sources.append(f"config file: {config_file}")
        else:
            discovered = self._discover_config_file(search_paths or [Path.cwd()])
            if discovered:
                source = discovered.pop("_source_file")
                config_data = self._merge_config(config_data, discovered)
                self.loaded_sources.append(f"auto-discovered: {source}")

        env_config = self._load_environment_variables()
        if env_config:
            config_data = self._merge_config(config_data, env_config)
            self.loaded_sources.append("environment variables")

        if cli_overrides:
            config_data = self._merge_config(config_data, cli_overrides)
            self.loaded_sources.append("CLI flags")

        config_data["loaded_from"] = self.loaded_sources
        if config_file:
            config_data["config_file_path"] = config_file

        return GatherConfiguration(**config_data)

    def _discover_config_file(self, search_paths: List[Path]) -> Optional[Dict[str, Any]]:
        """Discover configuration file in search paths."""
        for search_path in search_paths:
            for config_filename in self.DEFAULT_CONFIG_FILES:
                config_path = search_path / config_filename
                if config_path.is_file():
                    config_data = self._load_config_file(config_path)
                    config_data["_source_file"] = str(config_path)
                    return config_data
        return None

    def _load_config_file(self, config_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        suffix = config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ValueError(f"Unsupported config file format: {config_path.suffix}")

        try:
            content = config_path.read_text(encoding='utf-8')
            data = json.loads(content) if suffix == '.json' else yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {config_path}: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {config_path}: {e}")
        except OSError as e:
            raise ValueError(f"Error loading config file {config_path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        env_mapping = {
            f"{self.ENV_PREFIX}WIDTH": "browser.width",
            f"{self.ENV_PREFIX}HEIGHT": "browser.height",
            f"{self.ENV_PREFIX}PORT": "browser.port",
            f"{self.ENV_PREFIX}HEADLESS": "browser.headless",
            f"{self.ENV_PREFIX}NO_SANDBOX": "browser.no_sandbox",
            f"{self.ENV_PREFIX}TIMEOUT": "navigation.timeout_ms",
            f"{self.ENV_PREFIX}WAIT_UNTIL": "navigation.wait_until",
            f"{self.ENV_PREFIX}HAR": "outputs.har",
            f"{self.ENV_PREFIX}SCREENSHOT": "outputs.screenshot",
            f"{self.ENV_PREFIX}EVENTS": "outputs.events",
            f"{self.ENV_PREFIX}JS": "script.code",
            f"{self.ENV_PREFIX}JS_RESULT": "outputs.js_result",
            f"{self.ENV_PREFIX}LOG_LEVEL": "logging.level",
            f"{self.ENV_PREFIX}LOG_FILE": "logging.log_file",
        }

        for env_var, config_path in env_mapping.items():
            env_value = self.environ.get(env_var)
            if env_value is not None:
                converted_value = self._convert_env_value(env_value, config_path)
                self._set_nested_value(config, config_path, converted_value)

        return config

    def _convert_env_value(self, value: str, config_path: str) -> Any:
        """Convert environment variable string to appropriate type."""
        if config_path.endswith(self.BOOLEAN_KEYS):
            return value.strip().lower() in ('true', '1', 'yes', 'on')

        if config_path.endswith(self.INTEGER_KEYS):
            try:
                return int(value)
            except ValueError:
                raise ValueError(f"Expected an integer for {config_path}, got {value!r}")

        if config_path.endswith('.log_file'):
            return Path(value) if value else None

        return value

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration dictionaries, with override taking precedence."""
        if not override:
            return base

        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result


def load_configuration(
    config_file: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
    search_paths: Optional[List[Path]] = None
) -> GatherConfiguration:
    """Convenience function to load configuration.

    Args:
        config_file: Path to configuration file
        cli_overrides: CLI flag overrides
        search_paths: Paths to search for config files

    Returns:
        Loaded and merged configuration
    """
    return ConfigurationLoader().load_configuration(config_file, cli_overrides, search_paths)


def build_cli_overrides(**flags: Union[str, int, bool, Path, None]) -> Dict[str, Any]:
    """Map CLI flag values onto the configuration structure, skipping unset flags."""
    flag_mapping = {
        "width": "browser.width",
        "height": "browser.height",
        "port": "browser.port",
        "timeout": "navigation.timeout_ms",
        "har": "outputs.har",
        "screenshot": "outputs.screenshot",
        "events": "outputs.events",
        "js": "script.code",
        "jsresult": "outputs.js_result",
        "log_level": "logging.level",
        "log_file": "logging.log_file",
    }

    overrides: Dict[str, Any] = {}
    for flag, value in flags.items():
        if value is None:
            continue
        if flag not in flag_mapping:
            raise KeyError(f"Unknown CLI flag: {flag}")
        keys = flag_mapping[flag].split('.')
        overrides.setdefault(keys[0], {})[keys[1]] = value
    return overrides


def print_configuration(config: GatherConfiguration, format: str = "yaml") -> str:
    """Render configuration in the given format for debugging.

    Args:
        config: Configuration to print
        format: Output format (yaml, json)

    Returns:
        Formatted configuration string
    """
    config_dict = config.model_dump(
        mode="json",
        exclude={'loaded_from', 'config_file_path'},
        exclude_none=False
    )

    if format.lower() == "json":
        return json.dumps(config_dict, indent=2, default=str)
    return yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True)


def validate_configuration(config: GatherConfiguration) -> List[str]:
    """Validate configuration and return list of validation errors.

    Args:
        config: Configuration to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    for name in ('har', 'screenshot', 'events', 'js_result'):
        target = config.outputs.target(name)
        if target and not target.path.parent.exists():
            errors.append(f"Output directory for {name} does not exist: {target.path.parent}")

    if config.logging.log_file and not config.logging.log_file.parent.exists():
        errors.append(f"Log file directory does not exist: {config.logging.log_file.parent}")

    return errors
