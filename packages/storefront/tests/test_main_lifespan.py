from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

import storefront.db.session as session_module
from storefront.auth import ApiKeyAuthBackend, StorefrontUser, hash_api_key
from storefront.config import Settings
from storefront.logging import JSONFormatter, configure_logging
from storefront.main import cors_options, create_app
from storefront.middleware import CorrelationIDFilter, correlation_id_var


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    level = root.level
    yield
    # Drop only the handlers configure_logging installed; pytest manages its own.
    for handler in root.handlers[:]:
        if any(isinstance(f, CorrelationIDFilter) for f in handler.filters):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_lifespan_connects_database_and_runs_flush_service(
    settings: Settings, tmp_path: Path, restore_root_logging, reset_global_database
) -> None:
    settings.log_file_enabled = True
    app = create_app(settings)

    async with app.router.lifespan_context(app):
        db = session_module.get_database()
        assert db.url == settings.effective_database_url
        assert app.state.metrics_flush.running
        report = await app.state.health.readiness()
        assert report.status.value == "healthy"

    assert not app.state.metrics_flush.running
    assert session_module._database is None  # noqa: SLF001
    assert (Path(settings.log_dir) / "storefront.log").exists()


def test_cors_options_by_environment(settings: Settings) -> None:
    dev = cors_options(settings)
    assert dev["allow_origins"] == ["http://localhost:3000", "http://127.0.0.1:3000"]
    assert dev["allow_credentials"] is True

    prod = cors_options(Settings(_env_file=None, env="prod"))
    assert prod["allow_origins"] == ["*"]
    assert prod["allow_credentials"] is False


def test_json_formatter_includes_correlation_id() -> None:
    record = logging.LogRecord(
        "storefront.test", logging.ERROR, __file__, 1, "checkout failed", None, None
    )
    record.correlation_id = "req-42"

    payload = json.loads(JSONFormatter().format(record))

    assert payload["level"] == "ERROR"
    assert payload["message"] == "checkout failed"
    assert payload["correlation_id"] == "req-42"


def test_configure_logging_attaches_correlation_filter(
    tmp_path: Path, restore_root_logging
) -> None:
    configure_logging(log_format="json", log_dir=str(tmp_path))
    token = correlation_id_var.set("req-7")
    try:
        logging.getLogger("storefront.test").info("order placed")
    finally:
        correlation_id_var.reset(token)
    for handler in logging.getLogger().handlers:
        handler.flush()

    line = (tmp_path / "storefront.log").read_text().strip().splitlines()[-1]
    assert json.loads(line)["correlation_id"] == "req-7"


@pytest.mark.asyncio
async def test_api_key_backend_from_settings(settings: Settings) -> None:
    backend = ApiKeyAuthBackend.from_settings(settings)

    class Conn:
        def __init__(self, header: str | None) -> None:
            self.headers = {"Authorization": header} if header else {}
            self.url = type("U", (), {"path": "/api/cart"})()

    creds, user = await backend.authenticate(Conn("Bearer admin-secret"))
    assert isinstance(user, StorefrontUser)
    assert user.is_admin
    assert set(creds.scopes) == {"authenticated", "admin"}

    creds, user = await backend.authenticate(Conn("Bearer bob-key"))
    assert user.identity == "bob"
    assert creds.scopes == ["authenticated"]

    assert await backend.authenticate(Conn(None)) is None
    assert await backend.authenticate(Conn("Basic Ym9iOmJvYg==")) is None
    assert await backend.authenticate(Conn("Bearer wrong")) is None
    assert hash_api_key("bob-key") != "bob-key"
