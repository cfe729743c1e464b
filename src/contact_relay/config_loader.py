# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the contact relay.

Settings come from an INI file, with a few ``CRL_`` environment variables
taking precedence for deployment-specific values.

Example:
    Configuration file format (config.ini)::

        [server]
        host = 0.0.0.0
        port = 8000
        api_token = secret

        [form]
        honeypot_field = email_h_v

        [rate_limit]
        # fixed_window, sliding_window or token_bucket
        policy = sliding_window
        limit = 5
        window_seconds = 60

        [dispatch]
        # Dispatch order; any of smtp, webhook, log
        handlers = smtp, webhook
        timeout_seconds = 30

        [smtp]
        host = smtp.example.com
        port = 587
        user = mailer
        password = secret
        use_tls = true
        sender = no-reply@example.com
        # Per-operation SMTP timeout; [dispatch] timeout_seconds bounds the
        # whole delivery and wins when it is shorter
        timeout_seconds = 10

        [client.tenantKey123]
        name = Example Ltd
        recipients = contact@example.com, sales@example.com
        subject = New enquiry from {name}
        webhook_url = https://example.com/hooks/contact
        webhook_token = abc

    Loading it::

        config = load_app_config("/etc/contact-relay/config.ini")

Environment variables:
    CRL_CONFIG: Path to the config file (default: config.ini)
    CRL_HOST: Server host (overrides [server] host)
    CRL_PORT: Server port (overrides [server] port)
    CRL_API_TOKEN: Admin API token (overrides [server] api_token)
    CRL_LOG_LEVEL: Logging level (overrides [server] log_level)
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from .dispatch import DEFAULT_HANDLER_TIMEOUT
from .handlers import HANDLER_NAMES, SmtpSettings
from .logger import get_logger
from .models import DEFAULT_SUBJECT, ClientConfiguration
from .pipeline import DEFAULT_HONEYPOT_FIELD
from .rate_limit import POLICY_NAMES

CLIENT_SECTION_PREFIX = "client."
DEFAULT_CONFIG_PATH = "config.ini"

logger = get_logger("ConfigLoader")


class ConfigError(ValueError):
    """Raised when the configuration file is invalid."""


@dataclass(frozen=True)
class AppConfig:
    """Fully parsed configuration.

    Attributes:
        host: Interface the HTTP server binds to.
        port: HTTP port.
        api_token: Token protecting admin endpoints, or None.
        log_level: Root logging level name.
        honeypot_field: Hidden form field that must be submitted empty.
        rate_limit_policy: One of ``fixed_window``, ``sliding_window``,
            ``token_bucket``.
        rate_limit: Requests allowed per identity per window.
        rate_limit_window: Window length in seconds.
        handlers: Handler names in dispatch order.
        handler_timeout: Per-handler timeout in seconds.
        smtp: SMTP settings, required when ``smtp`` is a handler.
        clients: Registered tenants.
    """

    host: str = "0.0.0.0"
    port: int = 8000
    api_token: str | None = None
    log_level: str = "INFO"
    honeypot_field: str = DEFAULT_HONEYPOT_FIELD
    rate_limit_policy: str = "sliding_window"
    rate_limit: int = 5
    rate_limit_window: float = 60.0
    handlers: tuple[str, ...] = ("log",)
    handler_timeout: float = DEFAULT_HANDLER_TIMEOUT
    smtp: SmtpSettings | None = None
    clients: tuple[ClientConfiguration, ...] = field(default_factory=tuple)


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class ConfigLoader:
    """Parser for the INI configuration file.

    Attributes:
        config_path: Filesystem path to the configuration file.
        config: ConfigParser instance holding the parsed configuration.
    """

    def __init__(self, config_path: str | Path):
        self.config_path = str(config_path)
        self.config = configparser.ConfigParser(
            interpolation=None,
            inline_comment_prefixes=(";", "#"),
        )

    def load_config(self) -> None:
        """Read and parse the configuration file.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigError: If the file is not valid INI (e.g. duplicate sections).
        """
        if not Path(self.config_path).exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")
        try:
            self.config.read(self.config_path)
        except configparser.Error as exc:
            raise ConfigError(f"Cannot parse {self.config_path}: {exc}") from exc

    # -------------------------------------------------------------- helpers
    def _get(self, section: str, option: str, default: str | None = None) -> str | None:
        value = self.config.get(section, option, fallback=None)
        if value is None:
            return default
        value = value.strip()
        return value if value else default

    def _get_int(self, section: str, option: str, default: int) -> int:
        value = self._get(section, option)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigError(f"[{section}] {option} must be an integer, got {value!r}") from exc

    def _get_float(self, section: str, option: str, default: float) -> float:
        value = self._get(section, option)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"[{section}] {option} must be a number, got {value!r}") from exc

    def _get_bool(self, section: str, option: str, default: bool) -> bool:
        value = self._get(section, option)
        if value is None:
            return default
        normalized = value.lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        raise ConfigError(f"[{section}] {option} must be a boolean, got {value!r}")

    # -------------------------------------------------------------- parsing
    def parse_clients(self) -> list[ClientConfiguration]:
        """Parse every ``[client.<public_key>]`` section.

        Returns:
            Tenants in file order.

        Raises:
            ConfigError: If a section is malformed.
        """
        clients: list[ClientConfiguration] = []
        for section in self.config.sections():
            if not section.startswith(CLIENT_SECTION_PREFIX):
                continue
            public_key = section[len(CLIENT_SECTION_PREFIX):].strip()
            try:
                clients.append(
                    ClientConfiguration(
                        public_key=public_key,
                        name=self._get(section, "name"),
                        recipients=tuple(_split_list(self._get(section, "recipients"))),
                        subject=self._get(section, "subject", DEFAULT_SUBJECT),
                        webhook_url=self._get(section, "webhook_url"),
                        webhook_token=self._get(section, "webhook_token"),
                    )
                )
            except ValidationError as exc:
                raise ConfigError(f"Invalid client section [{section}]: {exc}") from exc
        if not clients:
            logger.warning("No [client.*] sections found in %s", self.config_path)
        else:
            logger.info("Parsed %d clients from config", len(clients))
        return clients

    def parse_smtp(self) -> SmtpSettings | None:
        """Parse the ``[smtp]`` section, or return None when it is absent."""
        if not self.config.has_section("smtp"):
            return None
        host = self._get("smtp", "host")
        sender = self._get("smtp", "sender")
        if not host:
            raise ConfigError("[smtp] host is required")
        if not sender:
            raise ConfigError("[smtp] sender is required")
        timeout = self._get_float("smtp", "timeout_seconds", 10.0)
        if timeout <= 0:
            raise ConfigError("[smtp] timeout_seconds must be positive")
        return SmtpSettings(
            host=host,
            port=self._get_int("smtp", "port", 587),
            sender=sender,
            user=self._get("smtp", "user"),
            password=self._get("smtp", "password"),
            use_tls=self._get_bool("smtp", "use_tls", True),
            timeout=timeout,
        )

    def parse(self, environ: Mapping[str, str] | None = None) -> AppConfig:
        """Build an :class:`AppConfig` from the loaded file and ``environ``.

        Raises:
            ConfigError: On any invalid value.
        """
        env = os.environ if environ is None else environ

        policy = self._get("rate_limit", "policy", "sliding_window")
        if policy not in POLICY_NAMES:
            raise ConfigError(f"[rate_limit] policy must be one of {', '.join(POLICY_NAMES)}, got {policy!r}")
        limit = self._get_int("rate_limit", "limit", 5)
        window = self._get_float("rate_limit", "window_seconds", 60.0)
        if limit < 1 or window <= 0:
            raise ConfigError("[rate_limit] limit and window_seconds must be positive")

        handler_timeout = self._get_float("dispatch", "timeout_seconds", DEFAULT_HANDLER_TIMEOUT)
        if handler_timeout <= 0:
            raise ConfigError("[dispatch] timeout_seconds must be positive")

        handlers = tuple(_split_list(self._get("dispatch", "handlers", "log")))
        unknown = [name for name in handlers if name not in HANDLER_NAMES]
        if unknown:
            raise ConfigError(f"[dispatch] unknown handlers: {', '.join(unknown)}")
        smtp = self.parse_smtp()
        if "smtp" in handlers and smtp is None:
            raise ConfigError("[dispatch] uses the smtp handler but there is no [smtp] section")

        clients = self.parse_clients()
        seen: set[str] = set()
        for client in clients:
            if client.public_key in seen:
                raise ConfigError(f"Duplicate client public key: {client.public_key}")
            seen.add(client.public_key)

        port = env.get("CRL_PORT") or self._get("server", "port")
        try:
            port_number = int(port) if port else 8000
        except ValueError as exc:
            raise ConfigError(f"Port must be an integer, got {port!r}") from exc

        return AppConfig(
            host=env.get("CRL_HOST") or self._get("server", "host", "0.0.0.0"),
            port=port_number,
            api_token=env.get("CRL_API_TOKEN") or self._get("server", "api_token"),
            log_level=(env.get("CRL_LOG_LEVEL") or self._get("server", "log_level", "INFO")).upper(),
            honeypot_field=self._get("form", "honeypot_field", DEFAULT_HONEYPOT_FIELD),
            rate_limit_policy=policy,
            rate_limit=limit,
            rate_limit_window=window,
            handlers=handlers,
            handler_timeout=handler_timeout,
            smtp=smtp,
            clients=tuple(clients),
        )


def load_app_config(config_path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Convenience function: read, parse and validate a config file.

    Args:
        config_path: Path to the INI file. Defaults to ``CRL_CONFIG`` or
            ``config.ini``.
        environ: Environment mapping for overrides (defaults to os.environ).

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigError: If the file is invalid.
    """
    env = os.environ if environ is None else environ
    path = config_path or env.get("CRL_CONFIG", DEFAULT_CONFIG_PATH)
    loader = ConfigLoader(path)
    loader.load_config()
    return loader.parse(env)
