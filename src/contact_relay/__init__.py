# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Multi-tenant contact form relay.

This package accepts contact-form submissions over HTTP and forwards them to
one or more delivery backends. Features include:

- Honeypot based bot rejection
- Tenant ("realm") resolution from an INI configuration file
- Message validation and sanitization
- Per-IP rate limiting with pluggable policies
- Fail-fast fan-out to SMTP, webhook and logging backends
- Prometheus metrics and a FastAPI REST API

Example:
    Basic usage with the FastAPI application::

        from contact_relay.config_loader import load_app_config
        from contact_relay.server import build_pipeline
        from contact_relay.api import create_app

        config = load_app_config("/etc/contact-relay/config.ini")
        app = create_app(build_pipeline(config), api_token=config.api_token)
"""

__version__ = "0.3.0"
