import io
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from config import get_settings

ROOT = Path(__file__).resolve().parents[1]


def make_config(buffer=None) -> Config:
    cfg = Config(output_buffer=buffer)
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    return cfg


@pytest.fixture
def ledger_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGER_DATA_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def test_upgrade_and_downgrade_on_sqlite(ledger_env, monkeypatch) -> None:
    url = f"sqlite:///{ledger_env / 'migrated.db'}"
    monkeypatch.setenv("LEDGER_DATABASE_URL", url)

    command.upgrade(make_config(), "head")

    engine = create_engine(url)
    tables = set(inspect(engine).get_table_names())
    assert {"users", "categories", "transactions", "transaction_audit_log"} <= tables

    command.downgrade(make_config(), "base")
    assert "transactions" not in inspect(engine).get_table_names()
    engine.dispose()


def test_postgresql_script_creates_each_enum_type_once(ledger_env, monkeypatch) -> None:
    monkeypatch.setenv("LEDGER_DATABASE_URL", "postgresql://ledger@localhost/ledger")
    buffer = io.StringIO()

    command.upgrade(make_config(buffer), "head", sql=True)

    sql = buffer.getvalue()
    assert sql.count("CREATE TYPE transactiontype") == 1
    assert sql.count("CREATE TYPE auditaction") == 1
