"""Qala configuration loading and validation.

Reads an optional ``qala.toml``, resolves ``${VAR}`` references, applies the
handful of environment overrides the deployment scripts rely on, and returns a
validated :class:`QalaConfig` dataclass.  Every field has a default so the
server starts with no config file at all.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_CONFIG_FILENAME = "qala.toml"

DEFAULT_MODEL = "command-r-plus"
DEFAULT_LLM_URL = "https://api.cohere.ai/v1/chat"

DEFAULT_SYSTEM_PROMPT = (
    "You are زیرەکی دەستکردی قەڵا (AI Castle), a smart and fast assistant that ALWAYS "
    "responds in Sorani Kurdish regardless of what language the user writes in. Always keep "
    "responses concise, direct and useful. The Sorani Kurdish language uses Arabic script "
    "and is read right-to-left. Your responses should be informative, accurate, and "
    "culturally appropriate for Kurdish speakers. Remember to NEVER respond in any language "
    "other than Sorani Kurdish under any circumstances."
)

REQUEST_CLASSES: tuple[str, ...] = ("chat", "knowledge", "embedding")


class ConfigError(Exception):
    """Raised when configuration is malformed or invalid."""


@dataclass
class ServerConfig:
    """HTTP listener settings from the [server] section."""

    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class BucketConfig:
    """Token bucket sizing for one request class."""

    capacity: float
    refill_rate: float


def _default_buckets() -> dict[str, BucketConfig]:
    return {
        "chat": BucketConfig(capacity=20, refill_rate=10),
        "knowledge": BucketConfig(capacity=50, refill_rate=30),
        "embedding": BucketConfig(capacity=10, refill_rate=5),
    }


@dataclass
class ThrottleConfig:
    """Per request-class rate limits from the [throttle] section.

    When ``enabled`` is false every class becomes a pass-through.
    """

    enabled: bool = True
    buckets: dict[str, BucketConfig] = field(default_factory=_default_buckets)


@dataclass
class PoolConfig:
    """Outbound connection pool bound from the [pool] section."""

    max_connections: int = 20


@dataclass
class CacheConfig:
    """Knowledge match cache sizing from the [cache] section."""

    max_size: int = 500
    ttl_seconds: float = 7200.0


@dataclass
class LLMConfig:
    """Upstream chat-completion settings from the [llm] section.

    An empty ``api_key`` disables the upstream path; requests that miss the
    knowledge base then receive an inline error frame instead of a crash.
    """

    api_key: str = ""
    base_url: str = DEFAULT_LLM_URL
    model: str = DEFAULT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = 0.65
    p: float = 0.8
    max_tokens: int = 800
    retry_attempts: int = 2
    backoff_base_s: float = 0.1
    timeout_s: float = 60.0


@dataclass
class StreamConfig:
    """SSE pacing for knowledge-base answers from the [stream] section.

    ``max_line_chars`` of 0 keeps one frame per non-blank line; a positive
    value additionally splits long lines at sentence or word boundaries.
    """

    base_delay_s: float = 0.04
    batch_size: int = 5
    max_line_chars: int = 0


@dataclass
class KnowledgeConfig:
    """Knowledge base maintenance from the [knowledge] section."""

    refresh_interval_s: float = 3600.0


@dataclass
class QalaConfig:
    """Fully parsed application configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _positive(value: Any, name: str, *, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number < 0 or (number == 0 and not allow_zero):
        raise ConfigError(f"{name} must be {'non-negative' if allow_zero else 'positive'}")
    return number


def _parse_throttle(section: dict[str, Any]) -> ThrottleConfig:
    buckets = _default_buckets()
    for request_class in REQUEST_CLASSES:
        raw = section.get(request_class)
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ConfigError(f"[throttle.{request_class}] must be a table")
        current = buckets[request_class]
        buckets[request_class] = BucketConfig(
            capacity=_positive(
                raw.get("capacity", current.capacity), f"throttle.{request_class}.capacity"
            ),
            refill_rate=_positive(
                raw.get("refill_rate", current.refill_rate),
                f"throttle.{request_class}.refill_rate",
            ),
        )
    return ThrottleConfig(enabled=bool(section.get("enabled", True)), buckets=buckets)


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {fmt!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=level, format=fmt, log_root=section.get("log_root"))


def _parse_llm(section: dict[str, Any]) -> LLMConfig:
    defaults = LLMConfig()
    retry_attempts = int(section.get("retry_attempts", defaults.retry_attempts))
    if retry_attempts < 0:
        raise ConfigError("llm.retry_attempts must be non-negative")
    return LLMConfig(
        api_key=str(section.get("api_key", defaults.api_key)),
        base_url=str(section.get("base_url", defaults.base_url)),
        model=str(section.get("model", defaults.model)),
        system_prompt=str(section.get("system_prompt", defaults.system_prompt)),
        temperature=float(section.get("temperature", defaults.temperature)),
        p=float(section.get("p", defaults.p)),
        max_tokens=int(section.get("max_tokens", defaults.max_tokens)),
        retry_attempts=retry_attempts,
        backoff_base_s=_positive(
            section.get("backoff_base_s", defaults.backoff_base_s),
            "llm.backoff_base_s",
            allow_zero=True,
        ),
        timeout_s=_positive(section.get("timeout_s", defaults.timeout_s), "llm.timeout_s"),
    )


def _parse_stream(section: dict[str, Any]) -> StreamConfig:
    batch_size = int(section.get("batch_size", 5))
    if batch_size < 1:
        raise ConfigError("stream.batch_size must be at least 1")
    return StreamConfig(
        base_delay_s=_positive(
            section.get("base_delay_s", 0.04), "stream.base_delay_s", allow_zero=True
        ),
        batch_size=batch_size,
        max_line_chars=int(
            _positive(section.get("max_line_chars", 0), "stream.max_line_chars", allow_zero=True)
        ),
    )


def _apply_env_overrides(config: QalaConfig) -> None:
    """Apply the process-environment knobs the deployment scripts export."""
    env = os.environ

    api_key = env.get("COHERE_API_KEY") or env.get("COHERE_KEY")
    if api_key:
        config.llm.api_key = api_key
    if "PORT" in env:
        config.server.port = int(env["PORT"])
    if "HOST" in env:
        config.server.host = env["HOST"]
    if "CORS_ORIGIN" in env:
        config.server.cors_origins = [o.strip() for o in env["CORS_ORIGIN"].split(",") if o]
    if "LOG_LEVEL" in env:
        config.logging.level = env["LOG_LEVEL"].upper()
    if "CACHE_SIZE" in env:
        config.cache.max_size = int(env["CACHE_SIZE"])
    if "CACHE_TTL_MINUTES" in env:
        config.cache.ttl_seconds = float(env["CACHE_TTL_MINUTES"]) * 60
    if "MAX_CONNECTIONS" in env:
        config.pool.max_connections = int(env["MAX_CONNECTIONS"])
    if "ENABLE_THROTTLING" in env:
        config.throttle.enabled = env["ENABLE_THROTTLING"].lower() != "false"

    chat = config.throttle.buckets["chat"]
    if "THROTTLE_CHAT_TOKENS" in env:
        chat.capacity = float(env["THROTTLE_CHAT_TOKENS"])
    if "THROTTLE_CHAT_REFILL" in env:
        chat.refill_rate = float(env["THROTTLE_CHAT_REFILL"])


# ---------------------------------------------------------------------------
# load_config()
# ---------------------------------------------------------------------------


def load_config(path: Path | None = None) -> QalaConfig:
    """Load and validate configuration.

    Parameters
    ----------
    path:
        Path to a ``qala.toml`` file, or a directory containing one.  ``None``
        (or a missing file) yields the defaults plus environment overrides.

    Returns
    -------
    QalaConfig
        Fully parsed and validated configuration.

    Raises
    ------
    ConfigError
        If the file contains invalid TOML, references unset environment
        variables, or holds out-of-range values.
    """
    data: dict[str, Any] = {}

    if path is not None:
        toml_path = path / DEFAULT_CONFIG_FILENAME if path.is_dir() else path
        if toml_path.exists():
            try:
                data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    server_section = _section(data, "server")
    cors = server_section.get("cors_origins", ["*"])
    if isinstance(cors, str):
        cors = [cors]

    pool_section = _section(data, "pool")
    max_connections = int(pool_section.get("max_connections", 20))
    if max_connections < 1:
        raise ConfigError("pool.max_connections must be at least 1")

    cache_section = _section(data, "cache")
    max_size = int(cache_section.get("max_size", 500))
    if max_size < 1:
        raise ConfigError("cache.max_size must be at least 1")

    config = QalaConfig(
        server=ServerConfig(
            host=str(server_section.get("host", "0.0.0.0")),
            port=int(server_section.get("port", 5000)),
            cors_origins=list(cors),
        ),
        logging=_parse_logging(_section(data, "logging")),
        throttle=_parse_throttle(_section(data, "throttle")),
        pool=PoolConfig(max_connections=max_connections),
        cache=CacheConfig(
            max_size=max_size,
            ttl_seconds=_positive(cache_section.get("ttl_seconds", 7200), "cache.ttl_seconds"),
        ),
        llm=_parse_llm(_section(data, "llm")),
        stream=_parse_stream(_section(data, "stream")),
        knowledge=KnowledgeConfig(
            refresh_interval_s=_positive(
                _section(data, "knowledge").get("refresh_interval_s", 3600),
                "knowledge.refresh_interval_s",
            )
        ),
    )

    _apply_env_overrides(config)
    return config
