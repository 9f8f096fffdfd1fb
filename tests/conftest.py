"""
Pytest configuration and fixtures.

Provides fixtures for:
- A temp-file SQLite database with all tables created
- Database sessions and a session maker for manager tests
- A small canonical catalog of cards and sets
- Source file writers for MTGJSON, Cardsphere CSV and price-history files
"""
import json
from pathlib import Path
from typing import Any, AsyncGenerator, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

import mtg_ingest.models  # noqa: F401
from mtg_ingest.db.base import Base
from mtg_ingest.db.session import create_session_maker
from mtg_ingest.models import Card, CardSet

BOLT_LEA = "00000000-0000-0000-0000-000000000001"
BOLT_2ED = "00000000-0000-0000-0000-000000000002"
COUNTERSPELL_LEA = "00000000-0000-0000-0000-000000000003"
LOTUS_LEA = "00000000-0000-0000-0000-000000000004"
JACE_WWK = "00000000-0000-0000-0000-000000000005"


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a file-backed test database so several sessions see the same data."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    """Session factory bound to the test engine."""
    return create_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# -----------------------------------------------------------------------------
# Catalog Fixtures
# -----------------------------------------------------------------------------

@pytest_asyncio.fixture
async def catalog(db_session) -> dict[str, Card]:
    """
    Canonical catalog used by matching and CSV tests.

    Lightning Bolt has two printings (LEA, 2ED), so a name-only match on
    it is ambiguous; Counterspell has one.
    """
    db_session.add_all([
        CardSet(code="LEA", name="Limited Edition Alpha"),
        CardSet(code="2ED", name="Unlimited Edition"),
        CardSet(code="WWK", name="Worldwake"),
    ])
    cards = {
        "bolt_lea": Card(uuid=BOLT_LEA, name="Lightning Bolt", set_code="LEA", set_name="Limited Edition Alpha"),
        "bolt_2ed": Card(uuid=BOLT_2ED, name="Lightning Bolt", set_code="2ED", set_name="Unlimited Edition"),
        "counterspell": Card(uuid=COUNTERSPELL_LEA, name="Counterspell", set_code="LEA", set_name="Limited Edition Alpha"),
        "lotus": Card(uuid=LOTUS_LEA, name="Black Lotus", set_code="LEA", set_name="Limited Edition Alpha"),
        "jace": Card(uuid=JACE_WWK, name="Jace, the Mind Sculptor", set_code="WWK", set_name="Worldwake"),
    }
    db_session.add_all(cards.values())
    await db_session.commit()
    return cards


# -----------------------------------------------------------------------------
# Source File Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def write_json(tmp_path) -> Callable[[Any, str], Path]:
    """Write a JSON document into tmp_path and return its path."""

    def _write(data: Any, name: str = "source.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_csv(tmp_path) -> Callable[[str, str], Path]:
    """Write CSV text into tmp_path and return its path."""

    def _write(content: str, name: str = "export.csv") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def mtgjson_entry() -> Callable[..., dict[str, Any]]:
    """Builder for one MTGJSON price entry."""

    def _entry(
        uuid: str,
        name: str = None,
        set_code: str = None,
        tcgplayer_normal: dict[str, float] = None,
        **extra: Any,
    ) -> dict[str, Any]:
        entry: dict[str, Any] = {"uuid": uuid}
        if name:
            entry["name"] = name
        if set_code:
            entry["setCode"] = set_code
        if tcgplayer_normal:
            entry["paper"] = {"tcgplayer": {"retail": {"normal": tcgplayer_normal}}}
        entry.update(extra)
        return entry

    return _entry
