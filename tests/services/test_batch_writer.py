"""Tests for batch writes into the catalog store."""
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from mtg_ingest.core.exceptions import BatchWriteError
from mtg_ingest.models import Card, CardSet, PriceRecord
from mtg_ingest.services.migration.batch_writer import BatchWriter
from mtg_ingest.services.migration.recovery import ErrorRecovery, RetryOptions

DAY = date(2024, 1, 15)


def card_row(uuid: str, name: str = "Card", set_code: str = "TST") -> dict:
    return {
        "uuid": uuid,
        "name": name,
        "set_code": set_code,
        "set_name": "Test Set",
        "rarity": None,
        "type_line": None,
        "mana_cost": None,
        "cmc": None,
        "oracle_text": None,
        "image_url": None,
    }


def price_row(uuid: str, price: float, variant: str = "normal") -> dict:
    return {
        "card_uuid": uuid,
        "price_date": DAY,
        "price": price,
        "source": "tcgplayer",
        "variant": variant,
    }


@pytest.fixture
def writer(db_session):
    return BatchWriter(db_session, ErrorRecovery())


class TestBatchWriter:
    """Tests for BatchWriter write modes."""

    @pytest.mark.asyncio
    async def test_skip_existing_cards(self, writer, db_session):
        """Per-row mode inserts new cards and skips existing uuids."""
        first = await writer.write_cards([card_row("a"), card_row("b")], skip_existing=True)
        second = await writer.write_cards([card_row("a", name="Renamed"), card_row("c")], skip_existing=True)

        assert (first.inserted, first.skipped) == (2, 0)
        assert (second.inserted, second.skipped) == (1, 1)
        card = (await db_session.execute(select(Card).where(Card.uuid == "a"))).scalar_one()
        assert card.name == "Card"

    @pytest.mark.asyncio
    async def test_upsert_cards_overwrites_descriptors(self, writer, db_session):
        """Bulk mode updates descriptive fields of existing cards."""
        await writer.write_cards([card_row("a")], skip_existing=False)
        await writer.write_cards([card_row("a", name="Renamed")], skip_existing=False)

        result = await db_session.execute(select(Card.name).where(Card.uuid == "a"))
        assert result.scalar_one() == "Renamed"

    @pytest.mark.asyncio
    async def test_upsert_keeps_descriptors_over_placeholders(self, writer, db_session):
        """Placeholder names and sets never replace real catalog values."""
        real = card_row("a", name="Lightning Bolt", set_code="LEA")
        real["set_name"] = "Limited Edition Alpha"
        real["rarity"] = "common"
        await writer.write_cards([real], skip_existing=False)

        placeholder = card_row("a", name="Card-a", set_code="UNK")
        placeholder["set_name"] = "Unknown Set"
        await writer.write_cards([placeholder], skip_existing=False)

        row = (await db_session.execute(
            select(Card.name, Card.set_code, Card.set_name, Card.rarity).where(Card.uuid == "a")
        )).one()
        assert tuple(row) == ("Lightning Bolt", "LEA", "Limited Edition Alpha", "common")

    @pytest.mark.asyncio
    async def test_upsert_set_keeps_real_name(self, writer, db_session):
        """A set name that is only the code or the fallback keeps the stored name."""
        await writer.write_sets([{"code": "LEA", "name": "Limited Edition Alpha"}], skip_existing=False)
        await writer.write_sets([{"code": "LEA", "name": "LEA"}], skip_existing=False)
        await writer.write_sets([{"code": "2ED", "name": "Unlimited"}], skip_existing=False)
        await writer.write_sets([{"code": "2ED", "name": "Unlimited Edition"}], skip_existing=False)

        rows = (await db_session.execute(
            select(CardSet.code, CardSet.name).order_by(CardSet.code)
        )).all()
        assert [tuple(r) for r in rows] == [("2ED", "Unlimited Edition"), ("LEA", "Limited Edition Alpha")]

    @pytest.mark.asyncio
    async def test_write_sets(self, writer, db_session):
        """Sets are keyed by code."""
        await writer.write_sets([{"code": "LEA", "name": "Alpha"}], skip_existing=True)
        result = await writer.write_sets([{"code": "LEA", "name": "Alpha"}], skip_existing=True)

        assert result.skipped == 1
        rows = (await db_session.execute(select(CardSet))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_write_prices_last_write_wins(self, writer, db_session):
        """Duplicate keys in and across batches keep the latest price."""
        result = await writer.write_prices([price_row("a", 1.0), price_row("a", 2.0), price_row("a", 5.0, "foil")])
        await writer.write_prices([price_row("a", 3.0)])

        assert (result.inserted, result.skipped) == (2, 1)
        prices = (await db_session.execute(
            select(PriceRecord.variant, PriceRecord.price).order_by(PriceRecord.variant)
        )).all()
        assert [tuple(p) for p in prices] == [("foil", 5.0), ("normal", 3.0)]

    @pytest.mark.asyncio
    async def test_chunking_keeps_all_rows(self, writer, db_session):
        """Batches larger than max_rows_per_statement are split."""
        with patch("mtg_ingest.services.migration.batch_writer.settings") as mock_settings:
            mock_settings.max_rows_per_statement = 2
            result = await writer.write_prices([price_row(f"card-{i}", 1.0) for i in range(5)])

        assert result.inserted == 5
        count = (await db_session.execute(select(PriceRecord))).scalars().all()
        assert len(count) == 5

    @pytest.mark.asyncio
    async def test_update_prices_only_touches_existing(self, writer, db_session):
        """update_prices overwrites existing keys and skips unknown ones."""
        await writer.write_prices([price_row("a", 1.0)])

        result = await writer.update_prices([price_row("a", 9.0), price_row("b", 4.0)])

        assert (result.updated, result.skipped) == (1, 1)
        prices = (await db_session.execute(select(PriceRecord.card_uuid, PriceRecord.price))).all()
        assert [tuple(p) for p in prices] == [("a", 9.0)]

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, db_session):
        """Dry runs count rows without touching the store."""
        writer = BatchWriter(db_session, ErrorRecovery(), dry_run=True)

        result = await writer.write_cards([card_row("a")], skip_existing=True)

        assert result.inserted == 1
        assert (await db_session.execute(select(Card))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_empty_batch(self, writer):
        """Empty input is a no-op."""
        result = await writer.write_prices([])

        assert (result.inserted, result.skipped, result.failed) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_retry_exhaustion_raises_batch_error(self, db_session):
        """A batch that keeps failing is rolled back and reported whole."""
        writer = BatchWriter(
            db_session,
            ErrorRecovery(),
            retry_options=RetryOptions(max_retries=2, retry_delay=0),
        )
        failing = AsyncMock(side_effect=RuntimeError("database is locked"))

        with patch.object(writer, "_upsert", failing), \
                patch("mtg_ingest.services.migration.recovery.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(BatchWriteError) as exc_info:
                await writer.write_prices([price_row("a", 1.0), price_row("b", 2.0)])

        assert exc_info.value.count == 2
        assert failing.await_count == 3
        assert (await db_session.execute(select(PriceRecord))).scalars().all() == []
