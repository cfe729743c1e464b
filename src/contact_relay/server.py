# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module wires configuration, rate limiter, tenant registry and delivery
handlers into a FastAPI application.

Usage:
    uvicorn --factory contact_relay.server:create_server_app --host 0.0.0.0 --port 8000

Environment variables:
    CRL_CONFIG: Path to the INI config file (default: config.ini)
"""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI

from .api import create_app
from .config_loader import AppConfig, ConfigError, load_app_config
from .dispatch import MessageHandler
from .handlers import LoggingHandler, SmtpHandler, WebhookHandler
from .logger import configure_logging, get_logger
from .pipeline import SubmissionPipeline
from .prometheus import ContactMetrics
from .rate_limit import RateLimiter, create_policy
from .registry import ClientRegistry

logger = get_logger("Server")


def build_handlers(config: AppConfig) -> list[MessageHandler]:
    """Instantiate the configured handlers in dispatch order.

    Raises:
        ConfigError: If ``smtp`` is requested without SMTP settings.
    """
    handlers: list[MessageHandler] = []
    for name in config.handlers:
        if name == "smtp":
            if config.smtp is None:
                raise ConfigError("smtp handler requires an [smtp] section")
            handlers.append(SmtpHandler(config.smtp))
        elif name == "webhook":
            handlers.append(WebhookHandler())
        elif name == "log":
            handlers.append(LoggingHandler())
        else:
            raise ConfigError(f"Unknown handler: {name}")
    return handlers


def build_pipeline(config: AppConfig, metrics: ContactMetrics | None = None) -> SubmissionPipeline:
    """Create a SubmissionPipeline from a parsed configuration."""
    policy = create_policy(config.rate_limit_policy, config.rate_limit, config.rate_limit_window)
    return SubmissionPipeline(
        ClientRegistry(config.clients),
        RateLimiter(policy),
        handlers=build_handlers(config),
        observer=metrics or ContactMetrics(),
        honeypot_field=config.honeypot_field,
        handler_timeout=config.handler_timeout,
    )


def create_server_app(config_path: str | Path | None = None) -> FastAPI:
    """Load configuration and return the configured application.

    Handler reloads re-read the same configuration file.
    """
    config = load_app_config(config_path)
    configure_logging(config.log_level)
    pipeline = build_pipeline(config)
    logger.info(
        "Contact relay ready: %d client(s), handlers: %s, rate limit %s %d/%ss",
        len(config.clients),
        ", ".join(config.handlers) or "(none)",
        config.rate_limit_policy,
        config.rate_limit,
        config.rate_limit_window,
    )

    def reload_handlers() -> list[MessageHandler]:
        return build_handlers(load_app_config(config_path))

    return create_app(pipeline, api_token=config.api_token, handler_loader=reload_handlers)
