"""Tests for the streaming MTGJSON importer."""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from mtg_ingest.core.constants import ImportLogStatus, MigrationPhase
from mtg_ingest.core.exceptions import BatchWriteError, SourceFileError, SourceFormatError
from mtg_ingest.models import Card, CardSet, ImportLog, PriceRecord
from mtg_ingest.services.migration.json_migration import (
    JsonImportStats,
    JsonMigration,
    JsonMigrationOptions,
)


async def count_rows(session, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar()


async def latest_log(session_maker) -> ImportLog:
    async with session_maker() as session:
        result = await session.execute(select(ImportLog).order_by(ImportLog.id.desc()).limit(1))
        return result.scalar_one()


@pytest.fixture
def price_file(write_json, mtgjson_entry):
    """Three cards in two sets with five tcgplayer prices between them."""
    return write_json({
        "meta": {"date": "2024-01-16", "version": "5.2.2"},
        "data": {
            "uuid-bolt": mtgjson_entry(
                "uuid-bolt", "Lightning Bolt", "LEA",
                {"2024-01-15": 450.0, "2024-01-16": 455.0},
            ),
            "uuid-lotus": mtgjson_entry(
                "uuid-lotus", "Black Lotus", "LEA",
                {"2024-01-15": 20000.0, "2024-01-16": 21000.0},
            ),
            "uuid-jace": mtgjson_entry(
                "uuid-jace", "Jace, the Mind Sculptor", "WWK",
                {"2024-01-16": 30.0},
            ),
        },
    }, "AllPrices.json")


class TestJsonMigration:
    """Tests for JsonMigration."""

    @pytest.mark.asyncio
    async def test_imports_cards_sets_and_prices(self, db_session, session_maker, price_file):
        """Cards, sets and every valid price point are written."""
        migration = JsonMigration(db_session, price_file, JsonMigrationOptions(batch_size=2))

        result = await migration.run()

        assert result.success is True
        assert result.job_id == migration.job_id
        assert result.stats["processed_cards"] == 3
        assert result.stats["processed_prices"] == 5
        assert result.stats["processed_sets"] == 2
        assert result.processed == 8
        assert await count_rows(db_session, Card) == 3
        assert await count_rows(db_session, CardSet) == 2
        assert await count_rows(db_session, PriceRecord) == 5
        assert migration.progress.phase == MigrationPhase.COMPLETED

        log = await latest_log(session_maker)
        assert log.status == ImportLogStatus.COMPLETED.value
        assert log.records_processed == 8
        assert log.details["options"]["batch_size"] == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db_session, price_file):
        """A second run with skip_existing adds nothing and skips every card."""
        await JsonMigration(db_session, price_file).run()
        cards_before = await count_rows(db_session, Card)
        prices_before = await count_rows(db_session, PriceRecord)

        result = await JsonMigration(db_session, price_file).run()

        assert result.success is True
        assert result.stats["processed_cards"] == 0
        assert result.stats["skipped_cards"] == 3
        assert result.skipped == 3
        assert await count_rows(db_session, Card) == cards_before
        assert await count_rows(db_session, PriceRecord) == prices_before

    @pytest.mark.asyncio
    async def test_price_conservation(self, db_session, write_json, mtgjson_entry):
        """Stored prices equal the distinct valid points in the source."""
        path = write_json({"data": {
            "uuid-1": mtgjson_entry(
                "uuid-1", "Card One", "TST",
                {"2024-01-15": 1.0, "2024-01-16": "bad", "junk": 2.0},
                mtgo={"2024-01-15": 0.5},
                mtgoFoil={"2024-01-15": 0.7},
            ),
        }})

        result = await JsonMigration(db_session, path).run()

        assert result.stats["processed_prices"] == 3
        assert result.stats["invalid_prices"] == 2
        assert await count_rows(db_session, PriceRecord) == 3

    @pytest.mark.asyncio
    async def test_entry_without_uuid_is_counted(self, db_session, write_json):
        """An array entry with no uuid bumps errors and the job still completes."""
        path = write_json({"data": [
            {"uuid": "uuid-1", "name": "Card One", "setCode": "TST"},
            {"name": "Nameless", "setCode": "TST"},
        ]})

        result = await JsonMigration(db_session, path).run()

        assert result.success is True
        assert result.stats["errors"] == 1
        assert result.stats["processed_cards"] == 1
        assert result.failed == 1
        assert any("no uuid" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_row_error_logged_once(self, db_session, session_maker, write_json):
        """A row error appears once in the import log message."""
        path = write_json({"data": [
            {"uuid": "uuid-1", "name": "Card One", "setCode": "TST"},
            {"name": "Nameless", "setCode": "TST"},
        ]})

        await JsonMigration(db_session, path).run()

        log = await latest_log(session_maker)
        assert log.error_message == "Entry has no uuid"

    @pytest.mark.asyncio
    async def test_placeholder_descriptors(self, db_session, write_json):
        """Price-only entries get placeholder names and the UNK set."""
        path = write_json({"data": {"uuid-1": {"mtgo": {"2024-01-15": 0.1}}}})

        await JsonMigration(db_session, path).run()

        card = (await db_session.execute(select(Card))).scalar_one()
        assert card.name == "Card-uuid-1"
        assert card.set_code == "UNK"
        codes = (await db_session.execute(select(CardSet.code))).scalars().all()
        assert codes == ["UNK"]

    @pytest.mark.asyncio
    async def test_price_only_entry_keeps_catalog_descriptors(self, db_session, catalog, write_json, mtgjson_entry):
        """Overwriting mode still keeps real names when the source has none."""
        uuid = catalog["bolt_lea"].uuid
        path = write_json({"data": {uuid: mtgjson_entry(uuid, tcgplayer_normal={"2024-01-15": 450.0})}})

        result = await JsonMigration(db_session, path, JsonMigrationOptions(skip_existing=False)).run()

        assert result.success is True
        card = (await db_session.execute(
            select(Card.name, Card.set_code, Card.set_name).where(Card.uuid == uuid)
        )).one()
        assert tuple(card) == ("Lightning Bolt", "LEA", "Limited Edition Alpha")
        set_name = (await db_session.execute(
            select(CardSet.name).where(CardSet.code == "LEA")
        )).scalar_one()
        assert set_name == "Limited Edition Alpha"
        assert await count_rows(db_session, PriceRecord) == 1

    @pytest.mark.asyncio
    async def test_missing_file_fails_job(self, db_session, session_maker, tmp_path):
        """A missing source raises and marks the log failed."""
        migration = JsonMigration(db_session, tmp_path / "missing.json")

        with pytest.raises(SourceFileError):
            await migration.run()

        log = await latest_log(session_maker)
        assert log.status == ImportLogStatus.FAILED.value
        assert "not found" in log.error_message
        assert migration.progress.phase == MigrationPhase.FAILED

    @pytest.mark.asyncio
    async def test_malformed_stream_keeps_committed_batches(self, db_session, session_maker, tmp_path):
        """A parse error fails the job but leaves earlier batches in place."""
        path = tmp_path / "truncated.json"
        path.write_text(
            '{"data": {"uuid-1": {"name": "Card One", "setCode": "TST"}, "uuid-2": {"name": ',
            encoding="utf-8",
        )
        migration = JsonMigration(db_session, path, JsonMigrationOptions(batch_size=1))

        with pytest.raises(SourceFormatError):
            await migration.run()

        assert await count_rows(db_session, Card) == 1
        log = await latest_log(session_maker)
        assert log.status == ImportLogStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_cancel_records_failure(self, db_session, session_maker, price_file):
        """A cancelled job returns an unsuccessful result and logs the cancel."""
        migration = JsonMigration(db_session, price_file, JsonMigrationOptions(batch_size=1))
        migration.cancel()

        result = await migration.run()

        assert result.success is False
        assert result.errors[0] == "Cancelled by request"
        log = await latest_log(session_maker)
        assert log.status == ImportLogStatus.FAILED.value
        assert log.error_message == "Cancelled by request"

    @pytest.mark.asyncio
    async def test_progress_callback_receives_stats(self, db_session, price_file):
        """The callback gets a stats copy after every card batch."""
        received = []
        options = JsonMigrationOptions(batch_size=1, progress_callback=received.append)

        await JsonMigration(db_session, price_file, options).run()

        assert len(received) == 3
        assert all(isinstance(s, JsonImportStats) for s in received)
        assert [s.processed_cards for s in received] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, db_session, price_file):
        """Dry runs report counts but leave the store empty."""
        result = await JsonMigration(db_session, price_file, JsonMigrationOptions(dry_run=True)).run()

        assert result.success is True
        assert result.stats["processed_cards"] == 3
        assert await count_rows(db_session, Card) == 0
        assert await count_rows(db_session, PriceRecord) == 0


class TestJsonMigrationWriteFailures:
    """Tests for batches that fail after every retry."""

    @pytest.fixture
    def two_card_file(self, write_json, mtgjson_entry):
        return write_json({"data": {
            "uuid-1": mtgjson_entry("uuid-1", "Card One", "TST"),
            "uuid-2": mtgjson_entry("uuid-2", "Card Two", "TST"),
        }})

    @staticmethod
    def fail_second_card_batch(migration):
        real_write = migration.writer.write_cards
        calls = []

        async def write_cards(cards, skip_existing):
            calls.append(len(cards))
            if len(calls) == 2:
                raise BatchWriteError("cards batch of 1 rows failed: database is locked", count=1)
            return await real_write(cards, skip_existing)

        return patch.object(migration.writer, "write_cards", new=AsyncMock(side_effect=write_cards))

    @pytest.mark.asyncio
    async def test_abort_keeps_committed_batches(self, db_session, session_maker, two_card_file):
        """Without continue_on_error the job fails and earlier batches stay."""
        options = JsonMigrationOptions(batch_size=1, continue_on_error=False)
        migration = JsonMigration(db_session, two_card_file, options)

        with self.fail_second_card_batch(migration):
            with pytest.raises(BatchWriteError):
                await migration.run()

        uuids = (await db_session.execute(select(Card.uuid))).scalars().all()
        assert uuids == ["uuid-1"]
        assert migration.progress.phase == MigrationPhase.FAILED
        log = await latest_log(session_maker)
        assert log.status == ImportLogStatus.FAILED.value
        assert "database is locked" in log.error_message

    @pytest.mark.asyncio
    async def test_continue_counts_failed_batch(self, db_session, session_maker, two_card_file):
        """With continue_on_error the failed batch is counted and the job completes."""
        migration = JsonMigration(db_session, two_card_file, JsonMigrationOptions(batch_size=1))

        with self.fail_second_card_batch(migration):
            result = await migration.run()

        assert result.success is True
        assert result.stats["failed_cards"] == 1
        assert result.stats["processed_cards"] == 1
        log = await latest_log(session_maker)
        assert log.status == ImportLogStatus.COMPLETED.value
