"""Environment configuration selection and production safeguards."""
from __future__ import annotations

import pytest

from beautybook import create_app
from beautybook.config import (DEV_SECRET_KEY, DevelopmentConfig, ProductionConfig, TestingConfig,
                               get_config)


def _production(secret_key):
    return type("ProductionUnderTest", (ProductionConfig,), {
        "SECRET_KEY": secret_key,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
    })


def test_get_config_by_name() -> None:
    assert get_config("testing") is TestingConfig
    assert get_config("PRODUCTION") is ProductionConfig
    assert get_config(None) is DevelopmentConfig
    assert get_config("staging") is DevelopmentConfig


@pytest.mark.parametrize("secret_key", [None, "", DEV_SECRET_KEY])
def test_production_requires_secret_key(secret_key) -> None:
    with pytest.raises(RuntimeError):
        create_app(_production(secret_key))


def test_production_starts_with_private_secret_key() -> None:
    app = create_app(_production("a-long-private-value"))

    assert app.config["SECRET_KEY"] == "a-long-private-value"
    assert app.debug is False
