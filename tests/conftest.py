from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

import pytest

from intentbook.config import Settings
from intentbook.domain.order import Order, OrderStatus, OrderType
from intentbook.persistence.uow import UnitOfWorkFactory


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture(autouse=True)
def isolate_default_state_db_per_test(
    isolate_settings_from_host_env: None,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    del isolate_settings_from_host_env
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "intentbook.sqlite"))


@pytest.fixture
def uow_factory(tmp_path: Path) -> UnitOfWorkFactory:
    return UnitOfWorkFactory(str(tmp_path / "orders.sqlite"))


@pytest.fixture
def make_order():
    def _make(order_hash: str = "0xhash1", **overrides) -> Order:
        base = Order(
            order_hash=order_hash,
            offerer="0xOfferer",
            chain_id=1,
            order_status=OrderStatus.OPEN,
            nonce="42",
            encoded_order="0xencoded",
            signature="0xsignature",
            created_at=1_700_000_000,
            deadline=1_700_000_600,
            type=OrderType.DUTCH_V2,
            filler="0xfiller",
            pair="0xin-0xout-1",
        )
        return replace(base, **overrides)

    return _make


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
