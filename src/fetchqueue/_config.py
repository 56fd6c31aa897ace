"""
Global configuration for the fetchqueue library.

This module provides a simple configuration system following Convention over Configuration (CoC).
Users can optionally call FETCHQUEUE.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Arguments passed to AdmissionQueue / JsonFileCache constructors
2. Values set via FETCHQUEUE.configure()
3. Environment variables (FETCHQUEUE_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from fetchqueue import FETCHQUEUE
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> limit = FETCHQUEUE.config.queue.max_requests
    >>>
    >>> # Custom configuration
    >>> FETCHQUEUE.configure(
    ...     queue={"max_requests": 4, "request_interval": 0.25},
    ...     cache={"file_name": "/tmp/cache.json"},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

_SECTIONS = ("queue", "cache")


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("FETCHQUEUE_QUEUE_MAX_REQUESTS", type_hint=int)
        6
        >>> EnvVars.get("FETCHQUEUE_CACHE_FILE_NAME")
        'cache.json'
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return _parse_bool
        return str


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("true", "1", "yes", "on"):
        return True
    if normalized in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` method for creating new instances
    with partial field updates. Uses strict validation to catch
    typos and invalid field names early.

    Example:
        >>> config = QueueConfig()
        >>> custom = config.with_overrides({"max_requests": 2})
        >>> custom.max_requests
        2
    """

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """
        Return a new instance with specified fields overridden.

        None values are ignored, so optional arguments can be passed through
        without clobbering the current value.

        Args:
            overrides: Dict of field names to new values.
                       Only existing fields are allowed.

        Returns:
            New instance with updated values.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        filtered = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Reads env vars declared in field metadata and applies them as overrides.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(var_name=env_var, type_hint=f.type)
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class QueueConfig(OverridableConfig):
    """
    Configuration for AdmissionQueue instances.

    These settings are used when a queue is built with
    `AdmissionQueue.from_config()`.

    Attributes:
        max_requests: Maximum number of concurrently admitted jobs.
            Env var: FETCHQUEUE_QUEUE_MAX_REQUESTS

        request_interval: Minimum number of seconds between two successive
            admissions. Use 0 to disable pacing.
            Env var: FETCHQUEUE_QUEUE_REQUEST_INTERVAL

        buffer_body: Whether fetch() reads the full response body before
            giving its slot back.
            Env var: FETCHQUEUE_QUEUE_BUFFER_BODY

        request_timeout: Default HTTP timeout in seconds used by fetch().
            Env var: FETCHQUEUE_QUEUE_REQUEST_TIMEOUT

    Example:
        >>> from fetchqueue import FETCHQUEUE
        >>> FETCHQUEUE.config.queue.max_requests
        6
    """

    max_requests: int = field(default=6, metadata={"env": "FETCHQUEUE_QUEUE_MAX_REQUESTS"})
    request_interval: float = field(default=0.0, metadata={"env": "FETCHQUEUE_QUEUE_REQUEST_INTERVAL"})
    buffer_body: bool = field(default=True, metadata={"env": "FETCHQUEUE_QUEUE_BUFFER_BODY"})
    request_timeout: int = field(default=30, metadata={"env": "FETCHQUEUE_QUEUE_REQUEST_TIMEOUT"})

    def validate(self) -> Self:
        """Validate queue configuration fields."""
        if self.max_requests <= 0:
            raise ConfigValidationError(
                "max_requests", self.max_requests,
                "Must be greater than 0.", section="queue"
            )
        if self.request_interval < 0:
            raise ConfigValidationError(
                "request_interval", self.request_interval,
                "Must be >= 0.", section="queue"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="queue"
            )
        return self


@dataclass(frozen=True)
class CacheConfig(OverridableConfig):
    """
    Configuration for JsonFileCache instances.

    Attributes:
        file_name: Path of the JSON file backing the cache.
            Env var: FETCHQUEUE_CACHE_FILE_NAME
    """

    file_name: str = field(default="cache.json", metadata={"env": "FETCHQUEUE_CACHE_FILE_NAME"})

    def validate(self) -> Self:
        """Validate cache configuration fields."""
        if not self.file_name or not self.file_name.strip():
            raise ConfigValidationError(
                "file_name", self.file_name,
                "Must not be empty.", section="cache"
            )
        return self


@dataclass(frozen=True)
class ConfigEntry:
    """
    A configuration field with its resolved value and source.

    Attributes:
        name: The field name (e.g., "max_requests").
        value: The resolved value.
        source: Where the value came from:
            - "default": Hardcoded default value
            - "env:VAR_NAME": Environment variable
            - "configure": Set via FETCHQUEUE.configure()

    Example:
        >>> entry = ConfigEntry("max_requests", 4, "configure")
        >>> entry.formatted_value
        '4'
    """

    name: str
    value: Any
    source: str

    @property
    def formatted_value(self) -> str:
        """Return value formatted for display, truncating long strings."""
        if self.value is None:
            return "None"

        str_value = str(self.value)
        max_length = 50
        if len(str_value) > max_length:
            return str_value[: max_length - 3] + "..."

        return str_value


@dataclass(frozen=True)
class FetchQueueConfig:
    """
    Global configuration for the fetchqueue library.

    Aggregates all configuration sections. Access via the global
    `FETCHQUEUE.config` property.

    Attributes:
        queue: AdmissionQueue configuration.
        cache: JsonFileCache configuration.
    """

    queue: QueueConfig = field(default_factory=QueueConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    # {"section": {"field": "source"}}
    _sources: dict[str, dict[str, str]] = field(default_factory=dict, repr=False, compare=False)

    def with_env_vars(self) -> FetchQueueConfig:
        """
        Return a new config with FETCHQUEUE_* environment variables applied on top.

        Returns:
            New FetchQueueConfig instance with env vars applied.
        """
        sources = self._copy_sources()
        for section_name in _SECTIONS:
            section = getattr(self, section_name)
            for f in fields(section):
                env_var = f.metadata.get("env")
                if env_var and os.environ.get(env_var):
                    sources.setdefault(section_name, {})[f.name] = f"env:{env_var}"

        return FetchQueueConfig(
            queue=self.queue.with_env_vars(),
            cache=self.cache.with_env_vars(),
            _sources=sources,
        )

    def with_section_overrides(
        self,
        *,
        queue: dict[str, Any] | None = None,
        cache: dict[str, Any] | None = None,
    ) -> FetchQueueConfig:
        """
        Return a new config with overrides applied to nested sections.

        Each section dict is merged with the existing section config,
        only overriding the specified fields.

        Example:
            >>> config = FetchQueueConfig()
            >>> custom = config.with_section_overrides(queue={"max_requests": 2})
        """
        sources = self._copy_sources()
        for section_name, overrides in (("queue", queue), ("cache", cache)):
            for name, value in (overrides or {}).items():
                if value is not None:
                    sources.setdefault(section_name, {})[name] = "configure"

        return FetchQueueConfig(
            queue=self.queue.with_overrides(queue or {}),
            cache=self.cache.with_overrides(cache or {}),
            _sources=sources,
        )

    def explain_data(self) -> dict[str, list[ConfigEntry]]:
        """
        Return config data structured for explain output.

        Returns:
            Dict mapping section names to list of ConfigEntry objects.
        """
        result: dict[str, list[ConfigEntry]] = {}
        for section_name in _SECTIONS:
            section_config = getattr(self, section_name)
            section_sources = self._sources.get(section_name, {})
            result[section_name] = [
                ConfigEntry(
                    name=f.name,
                    value=getattr(section_config, f.name),
                    source=section_sources.get(f.name, "default"),
                )
                for f in fields(section_config)
            ]
        return result

    def _copy_sources(self) -> dict[str, dict[str, str]]:
        return {section: dict(flds) for section, flds in self._sources.items()}


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _FetchQueueSettings:
    """
    Singleton for library configuration.

    Use `FETCHQUEUE.configure()` to customize settings and `FETCHQUEUE.config`
    to access current configuration.

    Example:
        >>> from fetchqueue import FETCHQUEUE
        >>> FETCHQUEUE.configure(queue={"max_requests": 2})
        >>> print(FETCHQUEUE.config.queue.max_requests)
    """

    def __init__(self) -> None:
        self._config: FetchQueueConfig = FetchQueueConfig().with_env_vars()

    def configure(
        self,
        *,
        queue: dict[str, Any] | None = None,
        cache: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> FetchQueueConfig:
        """
        Configure library settings.

        Call at application startup to customize defaults. Updates the
        internal configuration and returns the configured instance.

        Args:
            queue: AdmissionQueue config overrides (max_requests, request_interval, ...).
            cache: JsonFileCache config overrides (file_name).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured FetchQueueConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = FetchQueueConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(queue=queue, cache=cache)
        return self.validate()

    @property
    def config(self) -> FetchQueueConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> FetchQueueConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = FetchQueueConfig().with_env_vars()
        return self.validate()

    def validate(self) -> FetchQueueConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        self._config.queue.validate()
        self._config.cache.validate()
        return self._config

    def explain(
        self,
        output: Callable[[str], None] = print,
    ) -> None:
        """
        Print current configuration with sources.

        Args:
            output: Callable to output each line. Defaults to print.
                    Can be used with logging: `FETCHQUEUE.explain(logger.info)`

        Example:
            >>> FETCHQUEUE.explain()
            fetchqueue Configuration:
            ==========================
            [queue]
              max_requests ........ 4 ✎ configure
            ...
        """
        name_width = 25
        value_width = 50
        total_width = 2 + name_width + 2 + (value_width + 2) + 1 + 8

        output("fetchqueue Configuration:")
        output("=" * total_width)
        output(f"  {'Field':<{name_width}} │ {'Value':<{value_width}} │ Source")
        output(f"--{'-' * name_width}-+{'-' * (value_width + 2)}+--------")

        for section_name, entries in self._config.explain_data().items():
            output(f"[{section_name}]")
            for entry in entries:
                dots = "." * (name_width - len(entry.name))
                value_padded = entry.formatted_value.ljust(value_width)
                marker = "✎" if entry.source != "default" else " "
                output(f"  {entry.name} {dots} {value_padded} {marker} {entry.source}")

        output("=" * total_width)

    def __repr__(self) -> str:
        return f"FETCHQUEUE(config={self._config!r})"


# Global singleton instance - always reflects current configuration
FETCHQUEUE: _FetchQueueSettings = _FetchQueueSettings()
FETCHQUEUE.validate()
