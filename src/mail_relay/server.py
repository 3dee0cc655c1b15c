# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module provides a pre-configured FastAPI application that reads
settings from ``config.ini`` and ``MR_*`` environment variables and wires
the relay core automatically.

Usage:
    uvicorn mail_relay.server:app --host 0.0.0.0 --port 3000

Environment variables:
    MR_CONFIG: Path to the INI config file (default: config.ini).
    MR_SMTP_FILE_ID: Google Drive file id of the WebApp URL list.
    MR_API_TOKEN: API authentication token.
    See :mod:`mail_relay.config_loader` for the full list.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config_loader import load_settings
from .core import RelayCore
from .logger import configure_logging, get_logger

_settings = load_settings()
configure_logging(_settings.log_level)
_logger = get_logger("Server")

_core = RelayCore.from_settings(_settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler - warms the endpoint cache and closes HTTP sessions."""
    _logger.info("Starting mail relay...")
    await _core.start()
    try:
        yield
    finally:
        _logger.info("Stopping mail relay...")
        await _core.stop()


app = create_app(_core, api_token=_settings.api_token, lifespan=lifespan)
