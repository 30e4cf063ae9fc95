"""Tests for notifier configuration loading and wiring."""

from pathlib import Path

import pytest

from services.notifier.config import (
    NotifierConfig,
    build_email_client,
    build_messaging_client,
    build_orchestrator,
    load_notifier_config,
    resolve_smtp_password,
)
from services.notifier.models import Channel
from services.notifier.resolver import InMemoryRecipientStore

from tests.conftest import FakeEmailClient, FakeMessagingClient

PROJECT_CONFIG = Path(__file__).resolve().parents[4] / "config" / "notifier.yml"


class TestLoadNotifierConfig:

    def test_project_config_loads(self):
        config = load_notifier_config(str(PROJECT_CONFIG))

        assert config.dispatch.max_workers == 8
        assert config.messaging.address_prefix == "U"
        assert config.messaging.min_address_length == 30
        assert "hasn't added" in config.messaging.not_opted_in_patterns

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_notifier_config(str(tmp_path / "missing.yml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("dispatch: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_notifier_config(str(path))

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")

        config = load_notifier_config(str(path))

        assert config == NotifierConfig()
        assert config.dispatch.timeout_seconds is None

    def test_partial_file_overrides(self, tmp_path):
        path = tmp_path / "partial.yml"
        path.write_text(
            "dispatch:\n  max_workers: 3\n  timeout_seconds: 30\n"
            "messaging:\n  footer: 'Add us'\n  enabled: false\n"
        )

        config = load_notifier_config(str(path))

        assert config.dispatch.max_workers == 3
        assert config.dispatch.timeout_seconds == 30.0
        assert config.messaging.footer == "Add us"
        assert config.messaging.enabled is False
        assert config.email.enabled is True

    def test_invalid_max_workers(self, tmp_path):
        path = tmp_path / "workers.yml"
        path.write_text("dispatch:\n  max_workers: 0\n")
        with pytest.raises(ValueError, match="max_workers"):
            load_notifier_config(str(path))


class TestEnvironmentClients:

    def test_resolve_smtp_password_from_env(self, monkeypatch):
        monkeypatch.setenv("SMTP_PASSWORD", "s3cret")
        assert resolve_smtp_password() == "s3cret"

    def test_resolve_smtp_password_from_secret_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("SMTP_PASSWORD", raising=False)
        secret = tmp_path / "smtp_password"
        secret.write_text("from-file\n", encoding="utf-8")
        assert resolve_smtp_password(str(secret)) == "from-file"

    def test_resolve_smtp_password_absent(self, monkeypatch, tmp_path):
        monkeypatch.delenv("SMTP_PASSWORD", raising=False)
        assert resolve_smtp_password(str(tmp_path / "none")) is None

    def test_build_email_client(self, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "smtp.test")
        monkeypatch.setenv("SMTP_PORT", "465")
        monkeypatch.setenv("SMTP_FROM", "noreply@test")
        monkeypatch.setenv("SMTP_USE_SSL", "true")
        monkeypatch.setenv("SMTP_USE_TLS", "false")

        client = build_email_client(NotifierConfig().email)

        assert client.smtp_port == 465
        assert client.use_ssl is True
        assert client.use_tls is False

    def test_build_email_client_requires_host(self, monkeypatch):
        monkeypatch.delenv("SMTP_HOST", raising=False)
        monkeypatch.setenv("SMTP_FROM", "noreply@test")
        with pytest.raises(ValueError, match="SMTP_HOST"):
            build_email_client(NotifierConfig().email)

    def test_build_email_client_rejects_bad_port(self, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "smtp.test")
        monkeypatch.setenv("SMTP_FROM", "noreply@test")
        monkeypatch.setenv("SMTP_PORT", "smtp")
        with pytest.raises(ValueError, match="SMTP_PORT"):
            build_email_client(NotifierConfig().email)

    def test_build_messaging_client_token_fallback(self, monkeypatch):
        monkeypatch.delenv("MESSAGING_ACCESS_TOKEN", raising=False)
        monkeypatch.setenv("LINE_CHANNEL_ACCESS_TOKEN", "legacy-token")
        monkeypatch.delenv("MESSAGING_BASE_URL", raising=False)

        client = build_messaging_client(NotifierConfig().messaging)

        assert client.access_token == "legacy-token"
        assert client.base_url == "https://api.line.me"

    def test_build_messaging_client_requires_token(self, monkeypatch):
        monkeypatch.delenv("MESSAGING_ACCESS_TOKEN", raising=False)
        monkeypatch.delenv("LINE_CHANNEL_ACCESS_TOKEN", raising=False)
        with pytest.raises(ValueError, match="MESSAGING_ACCESS_TOKEN"):
            build_messaging_client(NotifierConfig().messaging)


class TestBuildOrchestrator:

    def test_wires_settings(self):
        config = NotifierConfig.from_dict(
            {"dispatch": {"max_workers": 4, "timeout_seconds": 15}, "messaging": {"min_address_length": 5}}
        )

        orchestrator = build_orchestrator(
            config,
            InMemoryRecipientStore(),
            email_client=FakeEmailClient(),
            messaging_client=FakeMessagingClient(),
        )

        assert orchestrator.max_workers == 4
        assert orchestrator.timeout == 15.0
        assert set(orchestrator.senders) == {Channel.EMAIL, Channel.MESSAGING}
        assert orchestrator.validators[Channel.MESSAGING]("U1234").is_valid

    def test_disabled_channel_has_no_sender(self):
        config = NotifierConfig.from_dict({"messaging": {"enabled": False}})

        orchestrator = build_orchestrator(config, InMemoryRecipientStore(), email_client=FakeEmailClient())

        assert set(orchestrator.senders) == {Channel.EMAIL}


pytestmark = pytest.mark.unit
