import logging

from apps.api.core.config import Settings
from apps.api.core.logging import configure_logging, init_tracer, parse_otlp_headers, shutdown_tracer
from apps.api.services.tickets import ResolvedAtPolicy, TransitionPolicy


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("TRANSITION_POLICY", "strict")
    monkeypatch.setenv("RESOLVED_AT_POLICY", "latest")
    monkeypatch.setenv("TICKET_NUMBER_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("AUTH_TOKENS", '{"t1": {"id": "staff-1", "role": "admin"}}')

    settings = Settings()

    assert settings.transition_policy == TransitionPolicy.STRICT
    assert settings.resolved_at_policy == ResolvedAtPolicy.LATEST
    assert settings.ticket_number_max_attempts == 7
    assert settings.ticket_update_max_retries == 3
    assert settings.auth_tokens == {"t1": {"id": "staff-1", "role": "admin"}}


def test_configure_logging_sets_levels():
    settings = Settings(app_name="bugdesk-test", log_level="debug")

    logger = configure_logging(settings)

    assert logger.name == "bugdesk-test"
    assert logger.level == logging.DEBUG
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_parse_otlp_headers_skips_malformed_items():
    assert parse_otlp_headers(None) == {}
    assert parse_otlp_headers("api-key=abc, x-tenant = blue ,broken,=empty") == {
        "api-key": "abc",
        "x-tenant": "blue",
    }


def test_tracer_disabled_by_default():
    provider = init_tracer(Settings(otel_enabled=False))

    assert provider is None
    shutdown_tracer(provider)
