from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from tablegate.config import DbConfig, DialectName
from tablegate.db.gateway import RelationalTableGateway


@pytest.fixture
def db_config(tmp_path) -> DbConfig:
    """
    SQLite file database for behavioural tests.

    A file (rather than :memory:) lets the test engine and the gateway see
    each other's committed writes through separate connections.
    """
    return DbConfig(database=str(tmp_path / "tablegate.db"), dialect=DialectName.SQLITE)


@pytest.fixture
def engine(db_config: DbConfig) -> Iterator[Engine]:
    """Independent engine used to set up schema and verify committed state."""
    eng = create_engine(db_config.url())
    yield eng
    eng.dispose()


@pytest.fixture
def people_table(engine: Engine) -> str:
    with engine.begin() as conn:
        conn.exec_driver_sql(
            """
            CREATE TABLE people (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name VARCHAR(255) NOT NULL UNIQUE,
                status VARCHAR(32) NOT NULL DEFAULT 'active',
                age INTEGER NULL,
                bio TEXT NULL
            )
            """
        )
    return "people"


@pytest.fixture
def orders_table(engine: Engine, people_table: str) -> str:
    with engine.begin() as conn:
        conn.exec_driver_sql(
            """
            CREATE TABLE orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                person_id INTEGER NOT NULL,
                item VARCHAR(64) NOT NULL
            )
            """
        )
    return "orders"


@pytest.fixture
def gateway_factory(db_config: DbConfig, people_table: str) -> Iterator[Callable[..., RelationalTableGateway]]:
    """
    Factory fixture creating gateways with config overrides.

    Usage:
        gw = gateway_factory(insert_ignore=True)
    """
    created: list[RelationalTableGateway] = []

    def _create(**options) -> RelationalTableGateway:
        gw = RelationalTableGateway(dataclasses.replace(db_config, **options))
        created.append(gw)
        return gw

    yield _create

    for gw in created:
        gw.close()


@pytest.fixture
def gateway(gateway_factory: Callable[..., RelationalTableGateway]) -> RelationalTableGateway:
    return gateway_factory()


@pytest.fixture
def seeded_gateway(gateway: RelationalTableGateway, engine: Engine) -> RelationalTableGateway:
    """Gateway over a people table holding Ada (36), Bob (17) and Cy (52, inactive)."""
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "INSERT INTO people (name, status, age) VALUES "
            "('Ada', 'active', 36), ('Bob', 'active', 17), ('Cy', 'inactive', 52)"
        )
    return gateway


@pytest.fixture
def row_count(engine: Engine) -> Callable[[str], int]:
    """Count rows through a connection independent of the gateway."""

    def _count(table: str) -> int:
        with engine.connect() as conn:
            return conn.exec_driver_sql(f"SELECT COUNT(*) FROM {table}").scalar_one()

    return _count
