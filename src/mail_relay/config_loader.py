# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the mail relay.

Settings come from an INI file with environment variables as fallbacks.
The file path is taken from ``MR_CONFIG`` (default: ``config.ini``); a
missing file simply leaves every setting to its environment variable or
default.

Example:
    Configuration file format (config.ini)::

        [quota]
        daily_limit = 1400
        soft_threshold = 0.9

        [endpoints]
        file_id = 1AbCdEf
        fallback_path = smtp.txt
        cache_ttl_seconds = 300
        fetch_timeout = 10

        [delivery]
        timeout = 30
        send_interval = 0.1
        max_batch_size = 500

        [message]
        subject_template = Hello {email} - ID: {randomID:7}
        from_name = TWFpbGVyIDxub3JlcGx5QGdtYWlsLmNvbT4=

        [server]
        host = 0.0.0.0
        port = 3000
        api_token = secret

        [logging]
        level = INFO

    Loading settings::

        settings = load_settings("/etc/mail-relay/config.ini")
        core = RelayCore.from_settings(settings)

Environment variables (all prefixed with ``MR_``):
    MR_DAILY_LIMIT, MR_SOFT_THRESHOLD, MR_SMTP_FILE_ID, MR_ENDPOINTS_URL,
    MR_ENDPOINTS_FALLBACK, MR_ENDPOINTS_CACHE_TTL, MR_ENDPOINTS_TIMEOUT,
    MR_DELIVERY_TIMEOUT, MR_SEND_INTERVAL, MR_MAX_BATCH_SIZE,
    MR_SUBJECT_TEMPLATE, MR_FROM_NAME, MR_HOST, MR_PORT, MR_API_TOKEN,
    MR_LOG_LEVEL.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path

from .logger import get_logger
from .templating import DEFAULT_FROM_NAME, DEFAULT_SUBJECT_TEMPLATE

logger = get_logger("ConfigLoader")


@dataclass
class RelaySettings:
    """Runtime settings of a relay instance.

    Attributes:
        daily_limit: Emails each endpoint may send per day.
        soft_threshold: Fraction of the limit above which single sends avoid
            an endpoint.
        file_id: Google Drive file id of the endpoint list.
        source_url: Explicit endpoint list URL (overrides ``file_id``).
        fallback_path: Local endpoint list used when the remote one fails.
        cache_ttl_seconds: Endpoint list cache lifetime.
        fetch_timeout: Endpoint list fetch timeout in seconds.
        delivery_timeout: Per-message delivery timeout in seconds.
        send_interval: Minimum spacing between dispatches to one endpoint
            during a bulk send.
        max_batch_size: Maximum addresses accepted by one bulk request.
        subject_template: Subject used when a request has none.
        from_name: Base64 sender name used when a request has none.
        host: Server bind address.
        port: Server port.
        api_token: Token required in ``X-API-Token``; None disables auth.
        log_level: Root logging level.
    """

    daily_limit: int = 1400
    soft_threshold: float = 0.9
    file_id: str | None = None
    source_url: str | None = None
    fallback_path: str = "smtp.txt"
    cache_ttl_seconds: int = 300
    fetch_timeout: float = 10.0
    delivery_timeout: float = 30.0
    send_interval: float = 0.1
    max_batch_size: int = 500
    subject_template: str = DEFAULT_SUBJECT_TEMPLATE
    from_name: str = DEFAULT_FROM_NAME
    host: str = "0.0.0.0"
    port: int = 3000
    api_token: str | None = None
    log_level: str = "INFO"


def load_settings(config_path: str | Path | None = None) -> RelaySettings:
    """Load settings from an INI file, falling back to ``MR_*`` environment variables.

    Args:
        config_path: INI file path. Defaults to ``$MR_CONFIG`` or ``config.ini``.

    Returns:
        RelaySettings with parsed values, using defaults for anything missing
        or malformed.
    """
    path = Path(config_path or os.getenv("MR_CONFIG", "config.ini"))
    parser = configparser.ConfigParser(interpolation=None)
    if path.exists():
        parser.read(path)
    else:
        logger.debug("Config file %s not found, using environment and defaults", path)

    defaults = RelaySettings()

    def get_str(section: str, option: str, env: str, default: str | None = None) -> str | None:
        if parser.has_option(section, option):
            value = parser.get(section, option).strip()
            return value or default
        value = os.getenv(env)
        return value.strip() if value and value.strip() else default

    def get_int(section: str, option: str, env: str, default: int) -> int:
        value = get_str(section, option, env)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Invalid int for {option}, using default {default}")
            return default

    def get_float(section: str, option: str, env: str, default: float) -> float:
        value = get_str(section, option, env)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning(f"Invalid float for {option}, using default {default}")
            return default

    settings = RelaySettings(
        daily_limit=get_int("quota", "daily_limit", "MR_DAILY_LIMIT", defaults.daily_limit),
        soft_threshold=get_float("quota", "soft_threshold", "MR_SOFT_THRESHOLD", defaults.soft_threshold),
        file_id=get_str("endpoints", "file_id", "MR_SMTP_FILE_ID"),
        source_url=get_str("endpoints", "source_url", "MR_ENDPOINTS_URL"),
        fallback_path=get_str("endpoints", "fallback_path", "MR_ENDPOINTS_FALLBACK", defaults.fallback_path),
        cache_ttl_seconds=get_int(
            "endpoints", "cache_ttl_seconds", "MR_ENDPOINTS_CACHE_TTL", defaults.cache_ttl_seconds
        ),
        fetch_timeout=get_float("endpoints", "fetch_timeout", "MR_ENDPOINTS_TIMEOUT", defaults.fetch_timeout),
        delivery_timeout=get_float("delivery", "timeout", "MR_DELIVERY_TIMEOUT", defaults.delivery_timeout),
        send_interval=get_float("delivery", "send_interval", "MR_SEND_INTERVAL", defaults.send_interval),
        max_batch_size=get_int("delivery", "max_batch_size", "MR_MAX_BATCH_SIZE", defaults.max_batch_size),
        subject_template=get_str(
            "message", "subject_template", "MR_SUBJECT_TEMPLATE", defaults.subject_template
        ),
        from_name=get_str("message", "from_name", "MR_FROM_NAME", defaults.from_name),
        host=get_str("server", "host", "MR_HOST", defaults.host),
        port=get_int("server", "port", "MR_PORT", defaults.port),
        api_token=get_str("server", "api_token", "MR_API_TOKEN"),
        log_level=(get_str("logging", "level", "MR_LOG_LEVEL", defaults.log_level) or "INFO").upper(),
    )

    if settings.daily_limit <= 0:
        logger.warning(f"daily_limit must be positive, using default {defaults.daily_limit}")
        settings.daily_limit = defaults.daily_limit
    if not 0 < settings.soft_threshold <= 1:
        logger.warning(f"soft_threshold must be in (0, 1], using default {defaults.soft_threshold}")
        settings.soft_threshold = defaults.soft_threshold
    return settings
