import logging

import structlog

from metalstack.zitadel_init.config import InitSettings
from metalstack.zitadel_init.logs import configure_logging, resolve_level


def test_settings_defaults(monkeypatch):
    for name in ("ENDPOINT", "PORT", "NAMESPACE", "INSECURE", "TOKEN_NAMESPACE"):
        monkeypatch.delenv(f"ZITADEL_INIT_{name}", raising=False)

    settings = InitSettings()

    assert settings.base_url == "http://localhost:8080"
    assert settings.namespace == "metal-control-plane"
    assert settings.secret_name == "zitadel-client-credentials"
    assert settings.effective_token_namespace == "metal-control-plane"
    assert settings.token_secret_key == "pat"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("ZITADEL_INIT_ENDPOINT", "zitadel.example.com")
    monkeypatch.setenv("ZITADEL_INIT_PORT", "443")
    monkeypatch.setenv("ZITADEL_INIT_INSECURE", "false")
    monkeypatch.setenv("ZITADEL_INIT_TOKEN_NAMESPACE", "zitadel")

    settings = InitSettings()

    assert settings.base_url == "https://zitadel.example.com:443"
    assert settings.effective_token_namespace == "zitadel"


def test_overrides_ignore_unset_values(monkeypatch):
    monkeypatch.setenv("ZITADEL_INIT_NAMESPACE", "from-env")

    settings = InitSettings().with_overrides(namespace=None, port=9090)

    assert settings.namespace == "from-env"
    assert settings.port == 9090


def test_authority_prefers_external_domain():
    assert InitSettings(endpoint="zitadel").authority == "zitadel"
    assert InitSettings(endpoint="zitadel", external_domain="auth.example.com").authority == (
        "auth.example.com"
    )


def test_resolve_level():
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.WARNING) == logging.WARNING
    assert resolve_level("20") == logging.INFO
    assert resolve_level("nonsense") == logging.INFO


def test_configure_logging_uses_given_level(monkeypatch):
    called = {}

    def fake_basicConfig(*, level=None, **kwargs):
        called["level"] = level

    monkeypatch.setattr(logging, "basicConfig", fake_basicConfig)
    configure_logging(log_level="WARNING", json_format=False)
    assert called["level"] == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_configure_logging_selects_renderer(monkeypatch):
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: None)

    configure_logging(json_format=True)
    assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)

    configure_logging(json_format=False)
    assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)


def test_log_level_is_case_insensitive(monkeypatch):
    monkeypatch.setenv("ZITADEL_INIT_LOG_LEVEL", "debug")

    assert InitSettings().log_level == "DEBUG"
