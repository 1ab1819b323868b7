"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the live-reload server.

=============================================================================
ONE CONFIG PER RUN
=============================================================================

A ServerConfig is built once per start() call and never changes while the
listener is bound. Changing anything (port, root, HTTPS) means stop and
start again with a new config.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHERE A RUN'S CONFIG COMES FROM                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Options passed to start()                                      │
    │      └── manager.start(options={"port": 3000})                     │
    │                                                                      │
    │   2. Defaults stored on the manager (update_config)                 │
    │      └── manager.update_config({"cors": True})                     │
    │                                                                      │
    │   3. Environment variables (CLI only)                               │
    │      └── LIVESERVER_PORT=3000 python -m liveserver                 │
    │                                                                      │
    │   4. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Options arrive as plain mappings from the UI layer. Every recognized key is
listed below; anything else is ignored and logged at DEBUG.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union, get_args, get_origin


logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# DEFAULT IGNORE PATTERNS
# ─────────────────────────────────────────────────────────────────────────────
# Glob patterns matched against "/"-prefixed paths relative to the served
# root. "**/x/**" therefore matches x at any depth, including the top level.

DEFAULT_IGNORE_PATTERNS: Tuple[str, ...] = (
    # Version control
    "**/.git/**",
    "**/.svn/**",
    "**/.hg/**",
    # Dependency caches
    "**/node_modules/**",
    "**/bower_components/**",
    "**/__pycache__/**",
    "**/.venv/**",
    # Build output and coverage
    "**/dist/**",
    "**/out/**",
    "**/coverage/**",
    "**/.nyc_output/**",
    "**/.next/**",
    "**/.nuxt/**",
    # Editor and OS droppings
    "**/.vscode/**",
    "**/.idea/**",
    "**/*.swp",
    "**/*~",
    "**/.DS_Store",
    "**/Thumbs.db",
    # Logs and temp files
    "**/*.log",
    "**/*.tmp",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _snake_case(key: str) -> str:
    """Convert camelCase option keys ("autoGenerateCert") to snake_case."""
    out = []
    for char in key:
        if char.isupper():
            out.append("_")
            out.append(char.lower())
        else:
            out.append(char)
    return "".join(out).lstrip("_")


# Option names the UI layer uses that differ from field names
_ALIASES = {
    "open": "open_browser",
    "open_on_start": "open_browser",
    "ignore": "ignored",
    "ignore_patterns": "ignored",
    "default_document": "default_file",
}


def _normalize_keys(options: Mapping[str, Any], known: set) -> Dict[str, Any]:
    """Map option keys onto dataclass field names, dropping unknown ones."""
    normalized: Dict[str, Any] = {}
    for key, value in options.items():
        name = _snake_case(str(key))
        name = _ALIASES.get(name, name)
        if name not in known:
            logger.debug(f"Ignoring unknown option: {key!r}")
            continue
        normalized[name] = value
    return normalized


_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _field_type(f) -> Any:
    """The concrete type of a dataclass field, unwrapping Optional[...]."""
    args = [arg for arg in get_args(f.type) if arg is not type(None)]
    if get_origin(f.type) is Union and len(args) == 1:
        return args[0]
    return f.type


def _coerce(name: str, value: Any, target: Any) -> Any:
    """
    Bring an option value to the scalar type of its field.

    Option mappings often come from JSON settings or the environment, so
    "8080" and "true" are accepted for int and bool fields. Values that
    cannot be converted raise ValueError naming the option.
    """
    if value is None or target not in (bool, int, float, str):
        return value
    if type(value) is target:
        return value
    try:
        if target is bool:
            if isinstance(value, str):
                text = value.strip().lower()
                if text in _TRUE_VALUES:
                    return True
                if text in _FALSE_VALUES:
                    return False
                raise ValueError(value)
            if isinstance(value, (int, float)):
                return bool(value)
            raise TypeError(value)
        if target is int:
            if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
                raise ValueError(value)
            if isinstance(value, str):
                return int(value.strip())
            if isinstance(value, (int, float)):
                return int(value)
            raise TypeError(value)
        if target is float:
            if isinstance(value, bool):
                raise ValueError(value)
            if isinstance(value, (str, int, float)):
                return float(value)
            raise TypeError(value)
        if isinstance(value, (str, os.PathLike)):
            return os.fspath(value)
        raise TypeError(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for option {name!r}: {value!r}") from None


def _coerce_values(cls, changes: Dict[str, Any]) -> Dict[str, Any]:
    types = {f.name: _field_type(f) for f in fields(cls)}
    return {name: _coerce(name, value, types[name]) for name, value in changes.items()}


@dataclass(frozen=True)
class HTTPSOptions:
    """
    HTTPS settings for one run.

    HTTPS is a best-effort upgrade: if no usable certificate can be
    obtained the server starts over plain HTTP instead.
    """

    enabled: bool = False
    """Serve over TLS."""

    port: Optional[int] = None
    """Port to listen on when HTTPS is active. None = use the main port."""

    domain: str = "localhost"
    """Domain the generated certificate is issued for."""

    cert_path: Optional[str] = None
    """PEM certificate supplied by the user. Takes precedence over generation."""

    key_path: Optional[str] = None
    """PEM private key matching cert_path."""

    auto_generate_cert: bool = True
    """Generate a self-signed certificate when no usable one is available."""

    warn_on_self_signed: bool = True
    """Emit certificate-self-signed-warning when serving a self-signed cert."""

    @classmethod
    def from_options(
        cls,
        options: Optional[Mapping[str, Any]],
        base: Optional["HTTPSOptions"] = None,
    ) -> "HTTPSOptions":
        """Merge a mapping of HTTPS options over ``base``."""
        base = base or cls()
        if isinstance(options, HTTPSOptions):
            return options
        if isinstance(options, bool):
            return replace(base, enabled=options)
        if not options:
            return base
        known = {f.name for f in fields(cls)}
        return replace(base, **_coerce_values(cls, _normalize_keys(options, known)))


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for one run of the live-reload server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    SERVING
    - port, host, root, default_file, cors, verbose, open_browser

    HTTPS
    - https (HTTPSOptions)

    PORT NEGOTIATION / STARTUP
    - auto_port, port_attempts, startup_timeout

    FILE WATCHING
    - ignored, batch_events, batch_delay, use_polling

    NETWORK / HTTP / THREADING
    - backlog, buffer_size, timeout, keep_alive, keep_alive_timeout,
      max_request_size, min_workers, max_workers

    =========================================================================
    """

    CONFIG_VERSION: ClassVar[int] = 1

    # ─────────────────────────────────────────────────────────────────────
    # SERVING
    # ─────────────────────────────────────────────────────────────────────

    port: int = 5500
    """
    Requested listen port. With auto_port the server may bind a higher one.
    0 asks the OS for an ephemeral port.
    """

    host: str = "127.0.0.1"
    """
    Address to bind to.
    - "127.0.0.1" - this machine only
    - "0.0.0.0" - reachable from the LAN (phones, other devices)
    """

    root: str = ""
    """Directory to serve. Empty = resolved by the manager at start()."""

    default_file: str = "/index.html"
    """Document served for "/"."""

    cors: bool = False
    """Add permissive CORS headers to every response."""

    open_browser: bool = False
    """Open-on-start flag. Consumed by the UI layer, carried here for it."""

    verbose: bool = False
    """Log every request at INFO instead of DEBUG."""

    https: HTTPSOptions = field(default_factory=HTTPSOptions)
    """HTTPS sub-options."""

    # ─────────────────────────────────────────────────────────────────────
    # PORT NEGOTIATION / STARTUP
    # ─────────────────────────────────────────────────────────────────────

    auto_port: bool = True
    """Try the next ports when the requested one is busy."""

    port_attempts: int = 10
    """How many consecutive ports auto_port may try."""

    startup_timeout: float = 5.0
    """Seconds the listener has to start accepting before start() gives up."""

    # ─────────────────────────────────────────────────────────────────────
    # FILE WATCHING
    # ─────────────────────────────────────────────────────────────────────

    ignored: Tuple[str, ...] = DEFAULT_IGNORE_PATTERNS
    """Glob patterns excluded from change detection."""

    batch_events: bool = True
    """Coalesce bursts of file events into one reload."""

    batch_delay: float = 0.25
    """Debounce window in seconds."""

    use_polling: bool = False
    """Poll the filesystem instead of using OS notifications (network drives)."""

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK / HTTP / THREADING
    # ─────────────────────────────────────────────────────────────────────

    backlog: int = 128
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    min_workers: int = 4
    max_workers: int = 32
    """Browsers open ~6 connections per host; a few tabs fit comfortably."""

    # ─────────────────────────────────────────────────────────────────────
    # IDENTITY / LOGGING
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "LiveServer/1.0"
    log_level: str = "INFO"

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def listen_port(self) -> int:
        """Port the listener should try first."""
        if self.https.enabled and self.https.port:
            return self.https.port
        return self.port

    @property
    def protocol(self) -> str:
        return "https" if self.https.enabled else "http"

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def from_options(
        cls,
        options: Optional[Mapping[str, Any]] = None,
        base: Optional["ServerConfig"] = None,
    ) -> "ServerConfig":
        """
        Merge caller-supplied options over a base config.

        Accepts both snake_case and camelCase keys. The nested ``https``
        mapping is merged over the base's HTTPS options. Unknown keys are
        dropped.

        Args:
            options: Mapping of option name to value.
            base: Config to merge over. Defaults to ``ServerConfig()``.

        Returns:
            A new ServerConfig.
        """
        base = base or cls()
        if not options:
            return base

        known = {f.name for f in fields(cls)}
        changes = _coerce_values(cls, _normalize_keys(options, known))

        if "https" in changes:
            changes["https"] = HTTPSOptions.from_options(changes["https"], base.https)
        if "ignored" in changes:
            changes["ignored"] = tuple(changes["ignored"])
        if "root" in changes and changes["root"]:
            changes["root"] = os.fspath(changes["root"])

        return replace(base, **changes)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        LIVESERVER_HOST          Bind host (default: 127.0.0.1)
        LIVESERVER_PORT          Port (default: 5500)
        LIVESERVER_ROOT          Served directory
        LIVESERVER_CORS          Enable CORS (1/true/yes)
        LIVESERVER_VERBOSE       Log every request
        LIVESERVER_HTTPS         Enable HTTPS
        LIVESERVER_HTTPS_PORT    HTTPS port
        LIVESERVER_HTTPS_DOMAIN  Certificate domain (default: localhost)
        LIVESERVER_CERT_PATH     Custom certificate
        LIVESERVER_KEY_PATH      Custom private key
        LIVESERVER_LOG_LEVEL     Logging level (default: INFO)

        =====================================================================
        """
        https_port = os.getenv("LIVESERVER_HTTPS_PORT")
        return cls(
            host=os.getenv("LIVESERVER_HOST", "127.0.0.1"),
            port=int(os.getenv("LIVESERVER_PORT", "5500")),
            root=os.getenv("LIVESERVER_ROOT", ""),
            cors=_env_flag("LIVESERVER_CORS"),
            verbose=_env_flag("LIVESERVER_VERBOSE"),
            log_level=os.getenv("LIVESERVER_LOG_LEVEL", "INFO"),
            https=HTTPSOptions(
                enabled=_env_flag("LIVESERVER_HTTPS"),
                port=int(https_port) if https_port else None,
                domain=os.getenv("LIVESERVER_HTTPS_DOMAIN", "localhost"),
                cert_path=os.getenv("LIVESERVER_CERT_PATH"),
                key_path=os.getenv("LIVESERVER_KEY_PATH"),
            ),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid value found.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.https.port is not None and not 0 < self.https.port < 65536:
            raise ValueError(f"Invalid HTTPS port: {self.https.port}. Must be 1-65535.")

        if self.port_attempts < 1:
            raise ValueError("port_attempts must be >= 1")

        if self.startup_timeout <= 0:
            raise ValueError("startup_timeout must be > 0")

        if self.batch_delay < 0:
            raise ValueError("batch_delay must be >= 0")

        if not self.default_file.startswith("/"):
            raise ValueError(f"default_file must start with '/': {self.default_file!r}")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")
