"""Runtime configuration for a synchronization run.

Reads CouchDB connection settings and sync options from CLI args,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    COUCHDB_URL: Database URL, e.g. http://host:5984/db (required)
    COUCHDB_USERNAME: Username for cookie authentication (optional)
    COUCHDB_PASSWORD: Password (required when a username is set)
    COUCHDB_INSECURE: Skip SSL verification (optional, default: false)
    COUCHDB_BATCH_SIZE: Documents per bulk batch (optional, default: 5000)
    COUCHDB_MAX_PARALLEL_REQUESTS: Concurrent reads per batch (optional, default: 5)
    COUCHDB_INIT_DESIGN: Bootstrap local design dirs from the database (optional)
    COUCHDB_MANAGE_DOCS: Synchronize the docs tree (optional, default: true)
    COUCHDB_REBUILD_INDEXES: Query each design doc after syncing (optional, default: true)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Each document may hold its source file and its timestamp file open at the
# same time, so 2 * DEFAULT_BATCH_SIZE must stay under the per-process
# descriptor ceiling (10240 on macOS).
DEFAULT_BATCH_SIZE = 5000
MAX_BATCH_SIZE = 10000


@dataclass
class Config:
    url: str
    username: str | None = None
    password: str | None = None
    source_dir: str = "."
    insecure: bool = False
    debug: bool = False
    init_design: bool = False
    manage_docs: bool = True
    rebuild_indexes: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    max_parallel_requests: int = 5


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL is malformed, a username has no password,
            or a numeric limit is out of range.
    """
    config.url = config.url.strip()

    if not config.url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid CouchDB URL '{config.url}': must start with http:// or https://"
        )

    parsed = urlparse(config.url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid CouchDB URL '{config.url}': URL must include a hostname"
        )
    if not parsed.path.strip("/"):
        raise ValueError(
            f"Invalid CouchDB URL '{config.url}': URL must name a database (http://host:5984/db)"
        )

    config.url = config.url.removesuffix("/")

    if config.username and not (config.password or "").strip():
        raise ValueError(
            "CouchDB password cannot be empty when a username is set. "
            "Set COUCHDB_PASSWORD environment variable."
        )

    if not (1 <= config.batch_size <= MAX_BATCH_SIZE):
        raise ValueError(
            f"Invalid batch size {config.batch_size}: must be between 1 and {MAX_BATCH_SIZE}"
        )

    if not (1 <= config.max_parallel_requests <= 100):
        raise ValueError(
            f"Invalid max_parallel_requests {config.max_parallel_requests}: must be between 1 and 100"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, low: int, high: int) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def _pick_bool(
    cli_value: bool | None, env_key: str, fallback: dict, key: str, default: bool
) -> bool:
    if cli_value is not None:
        return cli_value
    env_value = _get_bool_env(env_key)
    if env_value is not None:
        return env_value
    return bool(fallback.get(key, default))


def load_config(
    url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    source_dir: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    init_design: bool | None = None,
    manage_docs: bool | None = None,
    rebuild_indexes: bool | None = None,
    batch_size: int | None = None,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override database URL.
        username: Override username.
        password: Override password.
        source_dir: Directory holding ``_design/`` and ``docs/``.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        init_design: Bootstrap local design documents from the database.
        manage_docs: Synchronize the ``docs/`` tree.
        rebuild_indexes: Query each design document after syncing.
        batch_size: Documents per bulk batch.
        yaml_fallbacks: Flattened values from the YAML ``couchdb`` and
            ``sync`` sections, used when CLI arg and env var are unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the URL is missing or any value is invalid.
    """
    fb = yaml_fallbacks or {}

    final_url = url or os.getenv("COUCHDB_URL") or fb.get("url")
    if not final_url:
        raise ValueError(
            "CouchDB URL not found. Set COUCHDB_URL environment variable, "
            "pass --url CLI argument, or add 'url' to config.yml."
        )

    final_username = (
        username or os.getenv("COUCHDB_USERNAME") or fb.get("username")
    )
    final_password = (
        password or os.getenv("COUCHDB_PASSWORD") or fb.get("password")
    )

    final_insecure = _pick_bool(
        True if insecure else None, "COUCHDB_INSECURE", fb, "insecure", False
    )
    final_debug = _pick_bool(
        True if debug else None, "COUCHDB_DEBUG", fb, "debug", False
    )
    final_init_design = _pick_bool(
        init_design, "COUCHDB_INIT_DESIGN", fb, "init_design", False
    )
    final_manage_docs = _pick_bool(
        manage_docs, "COUCHDB_MANAGE_DOCS", fb, "manage_docs", True
    )
    final_rebuild = _pick_bool(
        rebuild_indexes,
        "COUCHDB_REBUILD_INDEXES",
        fb,
        "rebuild_indexes",
        True,
    )

    if batch_size is not None:
        final_batch = batch_size
    else:
        env_batch = _get_int_env("COUCHDB_BATCH_SIZE", 1, MAX_BATCH_SIZE)
        final_batch = (
            env_batch
            if env_batch is not None
            else int(fb.get("batch_size", DEFAULT_BATCH_SIZE))
        )

    env_parallel = _get_int_env("COUCHDB_MAX_PARALLEL_REQUESTS", 1, 100)
    final_parallel = (
        env_parallel
        if env_parallel is not None
        else int(fb.get("max_parallel_requests", 5))
    )

    config = Config(
        url=final_url.strip(),
        username=final_username.strip() if final_username else None,
        password=final_password.strip() if final_password else None,
        source_dir=source_dir or fb.get("source_dir") or ".",
        insecure=final_insecure,
        debug=final_debug,
        init_design=final_init_design,
        manage_docs=final_manage_docs,
        rebuild_indexes=final_rebuild,
        batch_size=final_batch,
        max_parallel_requests=final_parallel,
    )

    validate_config(config)

    return config
