"""
Configuration Loader for Notifier Service

Loads non-secret settings from notifier.yml and secrets from the environment,
and builds the channel clients and orchestrator from them. Everything is
resolved at construction time; nothing is read from the environment during a
notification cycle.
"""

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .composer import DEFAULT_SUBJECT_TEMPLATE, DEFAULT_TIMESTAMP_FORMAT, MessageComposer
from .email import EmailSender, SmtpEmailClient
from .messaging import (
    API_TIMEOUT_SECONDS,
    DEFAULT_NOT_OPTED_IN_PATTERNS,
    LineMessagingClient,
    MessagingSender,
)
from .models import Channel
from .orchestrator import DEFAULT_MAX_WORKERS, NotificationOrchestrator, ReportSink
from .resolver import RecipientResolver, RecipientStore
from .validation import (
    DEFAULT_MESSAGING_MIN_LENGTH,
    DEFAULT_MESSAGING_PREFIX,
    MessagingAddressValidator,
    validate_email_address,
)

logger = logging.getLogger(__name__)

SMTP_PASSWORD_SECRET_PATH = "/run/secrets/smtp_password"


@dataclass
class EmailSettings:
    """Email channel settings (non-secret)."""

    enabled: bool = True
    include_html: bool = True
    timeout_seconds: float = 10.0


@dataclass
class MessagingSettings:
    """Push-messaging channel settings (non-secret)."""

    enabled: bool = True
    address_prefix: str = DEFAULT_MESSAGING_PREFIX
    min_address_length: int = DEFAULT_MESSAGING_MIN_LENGTH
    not_opted_in_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_NOT_OPTED_IN_PATTERNS))
    footer: Optional[str] = None
    timeout_seconds: float = API_TIMEOUT_SECONDS
    max_retries: int = 2
    retry_initial_delay: float = 1.0


@dataclass
class DispatchSettings:
    """Fan-out settings."""

    max_workers: int = DEFAULT_MAX_WORKERS
    timeout_seconds: Optional[float] = None

    def validate(self) -> None:
        if self.max_workers < 1:
            raise ValueError(f"dispatch.max_workers must be >= 1, got {self.max_workers}")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"dispatch.timeout_seconds must be positive, got {self.timeout_seconds}")


@dataclass
class ComposerSettings:
    """Message rendering settings."""

    subject_template: str = DEFAULT_SUBJECT_TEMPLATE
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT
    timezone: Optional[str] = None


@dataclass
class NotifierConfig:
    """Complete notifier configuration."""

    email: EmailSettings = field(default_factory=EmailSettings)
    messaging: MessagingSettings = field(default_factory=MessagingSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    composer: ComposerSettings = field(default_factory=ComposerSettings)

    @classmethod
    def from_dict(cls, config_dict: Mapping[str, Any]) -> "NotifierConfig":
        """Create NotifierConfig from dictionary. Unknown keys are ignored."""
        email_dict = config_dict.get("email") or {}
        email = EmailSettings(
            enabled=bool(email_dict.get("enabled", True)),
            include_html=bool(email_dict.get("include_html", True)),
            timeout_seconds=float(email_dict.get("timeout_seconds", 10.0)),
        )

        messaging_dict = config_dict.get("messaging") or {}
        patterns = messaging_dict.get("not_opted_in_patterns")
        messaging = MessagingSettings(
            enabled=bool(messaging_dict.get("enabled", True)),
            address_prefix=str(messaging_dict.get("address_prefix", DEFAULT_MESSAGING_PREFIX)),
            min_address_length=int(messaging_dict.get("min_address_length", DEFAULT_MESSAGING_MIN_LENGTH)),
            not_opted_in_patterns=(
                [str(p) for p in patterns] if patterns is not None else list(DEFAULT_NOT_OPTED_IN_PATTERNS)
            ),
            footer=messaging_dict.get("footer") or None,
            timeout_seconds=float(messaging_dict.get("timeout_seconds", API_TIMEOUT_SECONDS)),
            max_retries=int(messaging_dict.get("max_retries", 2)),
            retry_initial_delay=float(messaging_dict.get("retry_initial_delay", 1.0)),
        )

        dispatch_dict = config_dict.get("dispatch") or {}
        timeout = dispatch_dict.get("timeout_seconds")
        dispatch = DispatchSettings(
            max_workers=int(dispatch_dict.get("max_workers", DEFAULT_MAX_WORKERS)),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )
        dispatch.validate()

        composer_dict = config_dict.get("composer") or {}
        composer = ComposerSettings(
            subject_template=composer_dict.get("subject_template", DEFAULT_SUBJECT_TEMPLATE),
            timestamp_format=composer_dict.get("timestamp_format", DEFAULT_TIMESTAMP_FORMAT),
            timezone=composer_dict.get("timezone") or None,
        )

        return cls(email=email, messaging=messaging, dispatch=dispatch, composer=composer)


def load_notifier_config(config_path: Optional[str] = None) -> NotifierConfig:
    """
    Load notifier configuration from YAML file.

    Args:
        config_path: Path to notifier.yml file. If None, uses config/notifier.yml
            at the project root.

    Returns:
        NotifierConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid

    Example:
        >>> config = load_notifier_config('config/notifier.yml')
        >>> config.dispatch.max_workers
        8
    """
    if config_path is None:
        project_root = Path(__file__).parent.parent.parent
        config_path = str(project_root / "config" / "notifier.yml")

    logger.info("Loading notifier configuration", extra={"config_path": config_path})

    try:
        with open(config_path, encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if not config_dict:
            logger.warning("Empty configuration file, using defaults")
            config_dict = {}
        if not isinstance(config_dict, Mapping):
            raise ValueError("Top-level configuration must be a mapping")

        config = NotifierConfig.from_dict(config_dict)
        logger.info(
            "Notifier configuration loaded successfully",
            extra={
                "max_workers": config.dispatch.max_workers,
                "timeout_seconds": config.dispatch.timeout_seconds,
                "email_enabled": config.email.enabled,
                "messaging_enabled": config.messaging.enabled,
            },
        )
        return config

    except FileNotFoundError:
        logger.error(f"Configuration file not found: {config_path}")
        raise
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML: {e}")
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise ValueError(f"Failed to load configuration: {e}") from e


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def resolve_smtp_password(secret_path: str = SMTP_PASSWORD_SECRET_PATH) -> Optional[str]:
    """
    Resolve SMTP password from environment variable or Docker secret file.

    Checks in order:
    1. SMTP_PASSWORD environment variable
    2. /run/secrets/smtp_password file (Docker secrets)

    Note:
        Attempts UTF-8 encoding first, falls back to UTF-16 if needed.
    """
    password = os.getenv("SMTP_PASSWORD")
    if password:
        return password
    if os.path.exists(secret_path):
        try:
            with open(secret_path, encoding="utf-8") as f:
                return f.read().strip()
        except UnicodeDecodeError:
            with open(secret_path, encoding="utf-16") as f:
                return f.read().strip()
    return None


def build_email_client(settings: EmailSettings) -> SmtpEmailClient:
    """
    Build the SMTP client from environment variables.

    Raises:
        ValueError: If SMTP_HOST or SMTP_FROM is missing, or SMTP_PORT is not a number.
    """
    port = os.getenv("SMTP_PORT", "587")
    try:
        smtp_port = int(port)
    except ValueError as e:
        raise ValueError(f"SMTP_PORT must be an integer, got {port!r}") from e

    return SmtpEmailClient(
        smtp_host=os.getenv("SMTP_HOST"),
        sender=os.getenv("SMTP_FROM"),
        smtp_port=smtp_port,
        smtp_user=os.getenv("SMTP_USER"),
        smtp_password=resolve_smtp_password(),
        use_tls=_env_flag("SMTP_USE_TLS", True),
        use_ssl=_env_flag("SMTP_USE_SSL", False),
        timeout=settings.timeout_seconds,
    )


def build_messaging_client(settings: MessagingSettings) -> LineMessagingClient:
    """
    Build the push-messaging client from environment variables.

    Raises:
        ValueError: If neither MESSAGING_ACCESS_TOKEN nor LINE_CHANNEL_ACCESS_TOKEN is set.
    """
    token = os.getenv("MESSAGING_ACCESS_TOKEN") or os.getenv("LINE_CHANNEL_ACCESS_TOKEN")
    return LineMessagingClient(
        access_token=token,
        base_url=os.getenv("MESSAGING_BASE_URL"),
        timeout=settings.timeout_seconds,
        max_retries=settings.max_retries,
        retry_initial_delay=settings.retry_initial_delay,
    )


def build_orchestrator(
    config: NotifierConfig,
    store: RecipientStore,
    report_sinks: Sequence[ReportSink] = (),
    email_client: Optional[Any] = None,
    messaging_client: Optional[Any] = None,
) -> NotificationOrchestrator:
    """
    Wire resolver, composer, senders and validators from configuration.

    Clients are built from the environment unless passed in. A channel that
    is disabled in configuration gets no sender, so no recipient is eligible
    for it.
    """
    senders = {}
    if config.email.enabled:
        client = email_client if email_client is not None else build_email_client(config.email)
        senders[Channel.EMAIL] = EmailSender(client, include_html=config.email.include_html)
    if config.messaging.enabled:
        client = messaging_client if messaging_client is not None else build_messaging_client(config.messaging)
        senders[Channel.MESSAGING] = MessagingSender(
            client,
            footer=config.messaging.footer,
            not_opted_in_patterns=config.messaging.not_opted_in_patterns,
        )
    if not senders:
        logger.warning("No notification channels enabled in configuration")

    validators = {
        Channel.EMAIL: validate_email_address,
        Channel.MESSAGING: MessagingAddressValidator(
            prefix=config.messaging.address_prefix,
            min_length=config.messaging.min_address_length,
        ),
    }

    composer = MessageComposer(
        subject_template=config.composer.subject_template,
        timestamp_format=config.composer.timestamp_format,
        tz_name=config.composer.timezone,
    )

    return NotificationOrchestrator(
        resolver=RecipientResolver(store),
        composer=composer,
        senders=senders,
        validators=validators,
        max_workers=config.dispatch.max_workers,
        timeout=config.dispatch.timeout_seconds,
        report_sinks=report_sinks,
    )


__all__ = [
    "ComposerSettings",
    "DispatchSettings",
    "EmailSettings",
    "MessagingSettings",
    "NotifierConfig",
    "build_email_client",
    "build_messaging_client",
    "build_orchestrator",
    "load_notifier_config",
    "resolve_smtp_password",
]
