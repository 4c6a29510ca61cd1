"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the web server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m webserve --port 3000                            │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── WEBSERVE_PORT=3000 python -m webserve                     │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
BUILDER VS. DATACLASS
=============================================================================

ServerConfig is a plain dataclass: cheap to construct in tests, validated
as a whole by validate().

ConfigBuilder is the way user input (CLI flags, environment) becomes a
config. Every setter checks its value. A bad value keeps the previous
valid one AND is recorded, so build() can report every problem at once:

    builder = ConfigBuilder().port("99999").directory("/nope")
    builder.errors
    # ['port must be an integer between 1 and 65535, got '99999'',
    #  'directory does not exist: /nope']
    builder.build()                # raises ConfigError listing both
    builder.build(strict=False)    # logs both, keeps the defaults

=============================================================================
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from .access import is_valid_pattern
from .tls import TLSMaterial, load_tls_material


logger = logging.getLogger(__name__)

LOG_FORMATS = ("common", "extended", "w3c")


class ConfigError(ValueError):
    """Raised when configuration values are invalid."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


@dataclass
class ServerConfig:
    """
    Configuration for the web server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK         host, port, backlog, buffer_size, timeout, tls
    HTTP            keep_alive, keep_alive_timeout, max_request_size
    THREADING       min_workers, max_workers
    CONTENT         root_dir, data_file
    ACCESS          allow
    ACCESS LOG      log_file, log_enabled, log_format, log_fields
    DIAGNOSTICS     log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """The IP address to bind to. Use "0.0.0.0" for all interfaces."""

    port: int = 8000
    """Port to listen on. 0 lets the OS pick one (tests only)."""

    backlog: int = 128
    """Maximum number of queued connections."""

    buffer_size: int = 8192
    """Size of each socket read in bytes."""

    timeout: Optional[float] = 30.0
    """Socket timeout in seconds for the first request on a connection."""

    tls: Optional[TLSMaterial] = None
    """Key/certificate material. When set, the listener speaks HTTPS."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 16

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    root_dir: str = field(default_factory=os.getcwd)
    """Directory static files are served from."""

    data_file: Optional[str] = None
    """
    Base filename for structured-output side files. A JSON response also
    lands in <base>.json, a CSV response in <base>.csv, and so on.
    None disables the side files.
    """

    # ─────────────────────────────────────────────────────────────────────
    # ACCESS CONTROL
    # ─────────────────────────────────────────────────────────────────────

    allow: List[str] = field(default_factory=list)
    """IP allow patterns. Empty means every client is allowed."""

    # ─────────────────────────────────────────────────────────────────────
    # ACCESS LOG
    # ─────────────────────────────────────────────────────────────────────

    log_file: Optional[str] = "logs/server.log"
    """Access log path. None sends access lines to the webserve.access logger."""

    log_enabled: bool = True
    """Turns the access log on or off."""

    log_format: Optional[str] = None
    """'common', 'extended', 'w3c' or None for the default layout."""

    log_fields: List[str] = field(default_factory=list)
    """Ordered field names for the 'w3c' layout."""

    # ─────────────────────────────────────────────────────────────────────
    # DIAGNOSTICS
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    server_name: str = "webserve/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        WEBSERVE_HOST       Server host (default: 127.0.0.1)
        WEBSERVE_PORT       Server port (default: 8000)
        WEBSERVE_DIR        Directory to serve (default: current directory)
        WEBSERVE_LOG        Access log path (default: logs/server.log)
        WEBSERVE_NO_LOG     Any non-empty value turns the access log off
        WEBSERVE_ALLOW      Comma-separated IP allow patterns
        WEBSERVE_LOG_LEVEL  Diagnostic log level (default: INFO)

        Values go through ConfigBuilder, so a bad value raises ConfigError.
        =====================================================================
        """
        builder = ConfigBuilder()
        env = os.environ

        if "WEBSERVE_HOST" in env:
            builder.host(env["WEBSERVE_HOST"])
        if "WEBSERVE_PORT" in env:
            builder.port(env["WEBSERVE_PORT"])
        if "WEBSERVE_DIR" in env:
            builder.directory(env["WEBSERVE_DIR"])
        if "WEBSERVE_LOG" in env:
            builder.log_file(env["WEBSERVE_LOG"])
        if env.get("WEBSERVE_NO_LOG"):
            builder.logging(False)
        if "WEBSERVE_ALLOW" in env:
            builder.allow(env["WEBSERVE_ALLOW"])
        if "WEBSERVE_LOG_LEVEL" in env:
            builder.log_level(env["WEBSERVE_LOG_LEVEL"])

        return builder.build()

    def validate(self) -> None:
        """
        Validate the whole configuration.

        Raises:
            ConfigError: listing every invalid value.
        """
        errors = []

        if not isinstance(self.port, int) or not 0 <= self.port < 65536:
            errors.append(f"Invalid port: {self.port}. Must be 1-65535.")
        if not self.host:
            errors.append("host must not be empty")
        if not Path(self.root_dir).is_dir():
            errors.append(f"root_dir does not exist: {self.root_dir}")
        if self.min_workers < 1:
            errors.append("min_workers must be >= 1")
        if self.max_workers < self.min_workers:
            errors.append("max_workers must be >= min_workers")
        if self.buffer_size < 1024:
            errors.append("buffer_size must be >= 1024")
        if self.timeout is not None and self.timeout <= 0:
            errors.append("timeout must be > 0")

        bad = [p for p in self.allow if not is_valid_pattern(p)]
        if bad:
            errors.append(f"invalid IP pattern(s): {', '.join(map(str, bad))}")

        if self.log_format is not None and self.log_format not in LOG_FORMATS:
            errors.append(f"log_format must be one of {LOG_FORMATS} or None")
        if self.log_format == "w3c" and not self.log_fields:
            errors.append("log_format 'w3c' needs log_fields")

        if errors:
            raise ConfigError(errors)


class ConfigBuilder:
    """
    Collects user-supplied settings and reports every invalid one.

    Each setter returns the builder for chaining.
    """

    def __init__(self, base: Optional[ServerConfig] = None):
        self._config = replace(base) if base else ServerConfig()
        self.errors: List[str] = []

    def _reject(self, message: str) -> "ConfigBuilder":
        self.errors.append(message)
        return self

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    def host(self, value: Any) -> "ConfigBuilder":
        if not isinstance(value, str) or not value.strip():
            return self._reject(f"host must be a non-empty string, got {value!r}")
        self._config.host = value.strip()
        return self

    def port(self, value: Any) -> "ConfigBuilder":
        try:
            number = int(value)
        except (TypeError, ValueError):
            number = -1
        if isinstance(value, bool) or not 0 < number < 65536:
            return self._reject(f"port must be an integer between 1 and 65535, got {value!r}")
        self._config.port = number
        return self

    def tls(
        self,
        key: Optional[str],
        cert: Optional[str] = None,
        passphrase: Optional[str] = None,
    ) -> "ConfigBuilder":
        """Load key + certificate, or a PKCS#12 bundle when cert is None."""
        try:
            self._config.tls = load_tls_material(key, cert, passphrase)
        except (OSError, ValueError) as e:
            return self._reject(f"invalid TLS material: {e}")
        return self

    def workers(self, count: Any) -> "ConfigBuilder":
        try:
            number = int(count)
        except (TypeError, ValueError):
            number = 0
        if number < 1:
            return self._reject(f"workers must be a positive integer, got {count!r}")
        self._config.min_workers = number
        self._config.max_workers = number * 2
        return self

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    def directory(self, value: Any) -> "ConfigBuilder":
        if not value or not Path(value).is_dir():
            return self._reject(f"directory does not exist: {value}")
        self._config.root_dir = str(Path(value).resolve())
        return self

    def data_file(self, value: Optional[str]) -> "ConfigBuilder":
        if value is not None and not isinstance(value, str):
            return self._reject(f"data_file must be a path, got {value!r}")
        self._config.data_file = value or None
        return self

    # ─────────────────────────────────────────────────────────────────────
    # ACCESS CONTROL
    # ─────────────────────────────────────────────────────────────────────

    def allow(self, patterns: Union[str, Sequence[str], None]) -> "ConfigBuilder":
        """Set the allow-list from a list or a comma-separated string."""
        if patterns is None:
            patterns = []
        elif isinstance(patterns, str):
            patterns = [p.strip() for p in patterns.split(",") if p.strip()]
        else:
            patterns = list(patterns)

        bad = [p for p in patterns if not is_valid_pattern(p)]
        if bad:
            return self._reject(f"invalid IP pattern(s): {', '.join(map(str, bad))}")
        self._config.allow = patterns
        return self

    # ─────────────────────────────────────────────────────────────────────
    # ACCESS LOG
    # ─────────────────────────────────────────────────────────────────────

    def log_file(self, value: Optional[str]) -> "ConfigBuilder":
        if value is not None and (not isinstance(value, str) or not value.strip()):
            return self._reject(f"log file must be a path, got {value!r}")
        self._config.log_file = value
        return self

    def logging(self, enabled: Any) -> "ConfigBuilder":
        if not isinstance(enabled, bool):
            return self._reject(f"logging must be True or False, got {enabled!r}")
        self._config.log_enabled = enabled
        return self

    def log_format(
        self,
        name: Optional[str],
        fields: Optional[Sequence[str]] = None,
    ) -> "ConfigBuilder":
        if name is not None and name not in LOG_FORMATS:
            return self._reject(f"log format must be one of {LOG_FORMATS}, got {name!r}")
        if name == "w3c" and not fields:
            return self._reject("log format 'w3c' needs a list of fields")
        self._config.log_format = name
        self._config.log_fields = list(fields or [])
        return self

    def log_level(self, value: Any) -> "ConfigBuilder":
        level = str(value).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return self._reject(f"unknown log level: {value!r}")
        self._config.log_level = level
        return self

    # ─────────────────────────────────────────────────────────────────────
    # RESULT
    # ─────────────────────────────────────────────────────────────────────

    def build(self, strict: bool = True) -> ServerConfig:
        """
        Produce the configuration.

        Args:
            strict: Raise ConfigError if any setter rejected a value. With
                    strict=False the rejections are logged as warnings and
                    the previous valid values are kept.
        """
        if self.errors:
            if strict:
                raise ConfigError(self.errors)
            for message in self.errors:
                logger.warning(f"Ignoring configuration value: {message}")

        config = replace(self._config)
        config.validate()
        return config
