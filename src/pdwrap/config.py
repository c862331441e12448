from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from .alerts import DEFAULT_API_URL
from .execution.types import ExitWindow

_API_URL_PATTERN = re.compile(r"^https?://[a-z0-9_.-]+(?::\d+)?(?:/.*)?$", re.IGNORECASE)
_API_KEY_PATTERN = re.compile(r"^[a-z0-9]+$", re.IGNORECASE)

# TOML key -> WrapperConfig field
_KEY_TO_FIELD = {
    "api_url": "api_url",
    "api_key": "api_key",
    "log": "log_path",
    "stdout": "echo_stdout",
    "stderr": "echo_stderr",
    "timeout": "timeout_seconds",
    "exit_min": "exit_min",
    "exit_max": "exit_max",
    "poll_interval": "poll_interval",
    "kill_grace_seconds": "kill_grace_seconds",
    "request_timeout_seconds": "request_timeout_seconds",
}
_BOOL_FIELDS = {"echo_stdout", "echo_stderr"}
_INT_FIELDS = {"timeout_seconds", "exit_min", "exit_max"}
_FLOAT_FIELDS = {"poll_interval", "kill_grace_seconds", "request_timeout_seconds"}

DEFAULT_CONFIG_PATHS: tuple[Path, ...] = (
    Path("/etc/pdwrap.toml"),
    Path("~/.pdwrap.toml"),
    Path(".pdwrap.toml"),
)


def _default_config_path() -> Path:
    """Return bundled default config TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read a config TOML file and return its settings table.

    Settings may sit at top level or under a ``[pdwrap]`` table.

    Example:
        ```python
        raw = _read_config_toml(Path("/etc/pdwrap.toml"))
        ```
    """
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid TOML in {path}: {exc}") from exc
    table = raw.get("pdwrap", raw)
    if not isinstance(table, dict):
        raise ValueError(f"Config in {path} must be a TOML table")
    unknown = sorted(set(table) - set(_KEY_TO_FIELD))
    if unknown:
        raise ValueError(f"Unknown config key(s) in {path}: {', '.join(unknown)}")
    return table


def _coerce(field_name: str, value: Any) -> Any:
    """Validate and normalize one setting for its target field.

    Example:
        ```python
        timeout = _coerce("timeout_seconds", 30)
        ```
    """
    if field_name in _BOOL_FIELDS:
        if not isinstance(value, bool):
            raise ValueError(f"'{field_name}' must be true or false")
        return value
    if field_name in _INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{field_name}' must be an integer")
        return value
    if field_name in _FLOAT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{field_name}' must be a number")
        return float(value)
    if field_name == "log_path" and value in ("", None):
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{field_name}' must be a string")
    return value


def _settings_from_table(table: Mapping[str, Any]) -> dict[str, Any]:
    """Translate a TOML settings table into WrapperConfig keyword arguments.

    Example:
        ```python
        kwargs = _settings_from_table({"timeout": 30, "log": "/tmp/job.log"})
        ```
    """
    return {_KEY_TO_FIELD[key]: _coerce(_KEY_TO_FIELD[key], value) for key, value in table.items()}


@dataclass(frozen=True, slots=True)
class WrapperConfig:
    """Immutable settings for one supervised invocation.

    Example:
        ```python
        config = WrapperConfig(api_key="abc123", timeout_seconds=60, exit_max=1)
        ```
    """

    api_url: str = DEFAULT_API_URL
    api_key: str = ""
    log_path: str | None = None
    echo_stdout: bool = False
    echo_stderr: bool = False
    timeout_seconds: int = 0
    exit_min: int = 0
    exit_max: int = 0
    poll_interval: float = 1.0
    kill_grace_seconds: float = 1.0
    request_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate settings after dataclass initialization.

        Example:
            ```python
            WrapperConfig(timeout_seconds=0)
            ```
        """
        if not _API_URL_PATTERN.match(self.api_url):
            raise ValueError("api_url must be a valid HTTP/HTTPS URL")
        if self.api_key and not _API_KEY_PATTERN.match(self.api_key):
            raise ValueError("api_key must be a valid PagerDuty API key")
        if self.timeout_seconds < 0:
            raise ValueError("timeout must be greater than or equal to 0")
        if self.exit_min > self.exit_max:
            raise ValueError("exit_min must be less than or equal to exit_max")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be greater than 0")
        if self.kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds must be greater than or equal to 0")

    @property
    def exit_window(self) -> ExitWindow:
        """Return the configured success window.

        Example:
            ```python
            window = config.exit_window
            ```
        """
        return ExitWindow(self.exit_min, self.exit_max)

    def require_api_key(self) -> None:
        """Raise ValueError when no API key is configured.

        Example:
            ```python
            config.require_api_key()
            ```
        """
        if not self.api_key:
            raise ValueError("api_key must be a valid PagerDuty API key")

    @classmethod
    def from_file(cls, config_path: str) -> "WrapperConfig":
        """Create a config from defaults plus one TOML file.

        Example:
            ```python
            config = WrapperConfig.from_file("/etc/pdwrap.toml")
            ```
        """
        return load_config(search_paths=(), config_file=config_path)


def load_config(
    *,
    search_paths: Iterable[Path] = DEFAULT_CONFIG_PATHS,
    config_file: str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> WrapperConfig:
    """Resolve the effective config from layered sources.

    Precedence, lowest first: field defaults, bundled defaults, each existing
    file in `search_paths`, `config_file` (must exist), then non-None
    `overrides` keyed by WrapperConfig field name.

    Example:
        ```python
        config = load_config(config_file="./nightly.toml", overrides={"timeout_seconds": 120})
        ```
    """
    settings: dict[str, Any] = {}
    bundled = _default_config_path()
    if bundled.exists():
        settings.update(_settings_from_table(_read_config_toml(bundled)))
    for path in search_paths:
        resolved = path.expanduser()
        if resolved.is_file():
            settings.update(_settings_from_table(_read_config_toml(resolved)))
    if config_file is not None:
        explicit = Path(config_file).expanduser()
        if not explicit.is_file():
            raise ValueError(f"Config file not found: {config_file}")
        settings.update(_settings_from_table(_read_config_toml(explicit)))
    for field_name, value in (overrides or {}).items():
        if value is not None:
            settings[field_name] = value
    return WrapperConfig(**settings)
