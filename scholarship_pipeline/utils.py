"""
Utility functions for the Scholarship Pipeline.

This module provides:
- Central logging configuration
- Environment variable access and pipeline configuration loading
- URL normalization and validation helpers
- Shared text helpers used across modules
"""

import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


# Default configuration values
DEFAULT_DATABASE_URL = "sqlite:///data/scholarships.db"
DEFAULT_AI_API_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_AI_MODEL = "llama-3.1-8b-instant"
DEFAULT_AI_FALLBACK_MODEL = "llama3-8b-8192"
DEFAULT_SWEEP_TIME = "02:00"

# Query parameters that only track where a link was shared from
TRACKING_PARAMS = {"fbclid", "gclid", "mc_cid", "mc_eid", "ref"}
TRACKING_PREFIXES = ("utm_",)


@dataclass
class PipelineConfig:
    """
    Runtime configuration for the pipeline.

    Attributes:
        database_url: SQLAlchemy URL of the link/catalog database.
        ai_api_url: OpenAI-compatible chat completions endpoint.
        ai_api_key: API key for the AI endpoint, None disables the AI fallback.
        ai_model: Primary model name.
        ai_fallback_model: Model tried once when the primary model errors.
        ai_timeout: AI request timeout in seconds.
        fetch_timeout: Page fetch timeout in seconds.
        fetch_max_retries: Attempts for transient fetch failures.
        fetch_backoff: Base backoff in seconds between fetch attempts.
        link_delay: Seconds to wait between links in a batch.
        batch_limit: Default number of links per batch.
        sweep_hour: Hour of day for the expiry sweep.
        sweep_minute: Minute of hour for the expiry sweep.
        batch_schedule: Frequency name for scheduled batches in service mode, None to disable.
        link_channel_id: Chat channel watched for links, None for any channel.
        log_level: Logging level name.
        dry_run: Preview batches instead of processing them.
        mode: "once" for a single pass, "service" for the long-running scheduler.
    """
    database_url: str = DEFAULT_DATABASE_URL
    ai_api_url: str = DEFAULT_AI_API_URL
    ai_api_key: Optional[str] = None
    ai_model: str = DEFAULT_AI_MODEL
    ai_fallback_model: Optional[str] = DEFAULT_AI_FALLBACK_MODEL
    ai_timeout: float = 30.0
    fetch_timeout: float = 15.0
    fetch_max_retries: int = 3
    fetch_backoff: float = 1.0
    link_delay: float = 1.5
    batch_limit: int = 10
    sweep_hour: int = 2
    sweep_minute: int = 0
    batch_schedule: Optional[str] = None
    link_channel_id: Optional[str] = None
    log_level: str = "INFO"
    dry_run: bool = False
    mode: str = "once"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("scholarship_pipeline")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"scholarship_pipeline.{name}")


def clean_env_value(value: Optional[str]) -> Optional[str]:
    """Strip whitespace and one layer of surrounding quotes from an env value."""
    if value is None:
        return None
    return re.sub(r"^[\"']|[\"']$", "", value.strip()).strip()


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Get an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable.
        required: If True, raises ValueError when variable is not set.
                  Defaults to True.
        default: Default value if variable is not set and not required.

    Returns:
        Value of the environment variable or default.

    Raises:
        ValueError: If required=True and the variable is not set.
    """
    value = clean_env_value(os.environ.get(name))

    if value is None or value == "":
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set")
        return default

    return value


def _env_number(name: str, default, cast):
    logger = get_logger("utils")
    raw = get_env_var(name, required=False)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using default {default}")
        return default


def _env_flag(name: str) -> bool:
    raw = get_env_var(name, required=False, default="")
    return (raw or "").lower() in ("true", "1", "yes")


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """
    Parse an "HH:MM" string into (hour, minute).

    Raises:
        ValueError: If the value is not a valid time of day.
    """
    match = re.fullmatch(r"(\d{1,2}):(\d{2})", value.strip())
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour, minute


def load_config() -> PipelineConfig:
    """
    Build the pipeline configuration from environment variables.

    Missing variables fall back to defaults; malformed numeric values are
    logged and replaced by their defaults.

    Returns:
        PipelineConfig instance.
    """
    logger = get_logger("utils")

    sweep_time = get_env_var("SWEEP_TIME", required=False, default=DEFAULT_SWEEP_TIME)
    try:
        sweep_hour, sweep_minute = parse_time_of_day(sweep_time or DEFAULT_SWEEP_TIME)
    except ValueError as e:
        logger.warning(f"{e}, using {DEFAULT_SWEEP_TIME}")
        sweep_hour, sweep_minute = parse_time_of_day(DEFAULT_SWEEP_TIME)

    mode = (get_env_var("PIPELINE_MODE", required=False, default="once") or "once").lower()
    if mode not in ("once", "service"):
        logger.warning(f"Unknown PIPELINE_MODE {mode!r}, using 'once'")
        mode = "once"

    return PipelineConfig(
        database_url=get_env_var("DATABASE_URL", required=False, default=DEFAULT_DATABASE_URL),
        ai_api_url=get_env_var("AI_API_URL", required=False, default=DEFAULT_AI_API_URL),
        ai_api_key=(
            get_env_var("AI_API_KEY", required=False)
            or get_env_var("GROQ_API_KEY", required=False)
        ),
        ai_model=get_env_var("AI_MODEL", required=False, default=DEFAULT_AI_MODEL),
        ai_fallback_model=get_env_var(
            "AI_FALLBACK_MODEL", required=False, default=DEFAULT_AI_FALLBACK_MODEL
        ),
        ai_timeout=_env_number("AI_TIMEOUT", 30.0, float),
        fetch_timeout=_env_number("FETCH_TIMEOUT", 15.0, float),
        fetch_max_retries=_env_number("FETCH_MAX_RETRIES", 3, int),
        fetch_backoff=_env_number("FETCH_BACKOFF", 1.0, float),
        link_delay=_env_number("LINK_DELAY", 1.5, float),
        batch_limit=_env_number("BATCH_LIMIT", 10, int),
        sweep_hour=sweep_hour,
        sweep_minute=sweep_minute,
        batch_schedule=(get_env_var("BATCH_SCHEDULE", required=False) or "").strip().lower() or None,
        link_channel_id=get_env_var("LINK_CHANNEL_ID", required=False),
        log_level=(get_env_var("LOG_LEVEL", required=False, default="INFO") or "INFO").upper(),
        dry_run=_env_flag("DRY_RUN"),
        mode=mode,
    )


def validate_url(url: str) -> bool:
    """
    Validate that a URL is well-formed and uses HTTP/HTTPS.

    Args:
        url: URL string to validate.

    Returns:
        True if URL is valid, False otherwise.
    """
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except Exception:
        return False


def _is_tracking_param(key: str) -> bool:
    key = key.lower()
    return key in TRACKING_PARAMS or key.startswith(TRACKING_PREFIXES)


def normalize_link(url: str) -> str:
    """
    Normalize a submitted link so the same page maps to one stored URL.

    Trims whitespace, lower-cases scheme and host, drops the fragment and
    removes tracking query parameters. Remaining parameters keep their order.

    Args:
        url: Raw URL as submitted.

    Returns:
        Normalized URL string (unchanged apart from trimming if unparsable).
    """
    url = (url or "").strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        return url

    if not parsed.scheme or not parsed.netloc:
        return url

    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]

    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path or "/",
        parsed.params,
        urlencode(query),
        ""
    ))


def sanitize_text(text: str) -> str:
    """
    Clean and normalize text content.

    Removes extra whitespace, newlines, and normalizes spacing.

    Args:
        text: Raw text to sanitize.

    Returns:
        Cleaned text string.
    """
    if not text:
        return ""

    cleaned = re.sub(r"\s+", " ", text)
    return cleaned.strip()


def normalize_name(name: str) -> str:
    """Case-fold and collapse whitespace; used as the catalog dedup key."""
    return sanitize_text(name).casefold()


def truncate(text: str, limit: int) -> str:
    """Shorten text to at most limit characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."
