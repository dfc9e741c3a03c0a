import importlib

import pytest
from sqlalchemy.engine import make_url

import storefront.config


@pytest.fixture
def reload_config(monkeypatch):
    """Reload settings against a patched environment, then restore them."""
    yield lambda: importlib.reload(storefront.config)
    monkeypatch.undo()
    importlib.reload(storefront.config)


class TestConfig:

    def test_default_database_url_names_driver(self, monkeypatch, reload_config):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        url = make_url(reload_config().DATABASE_URL)

        assert url.get_backend_name() == "postgresql"
        assert url.get_driver_name() == "psycopg2"

    def test_service_identity_from_environment(self, monkeypatch, reload_config):
        monkeypatch.setenv("SERVICE_NAME", "storefront-eu")
        monkeypatch.setenv("API_VERSION", "2.3.0")

        config = reload_config()

        assert config.SERVICE_NAME == "storefront-eu"
        assert config.API_VERSION == "2.3.0"

    def test_service_identity_defaults(self, monkeypatch, reload_config):
        monkeypatch.delenv("SERVICE_NAME", raising=False)
        monkeypatch.delenv("API_VERSION", raising=False)

        config = reload_config()

        assert config.SERVICE_NAME == "storefront"
        assert config.API_VERSION == "1.0.0"
