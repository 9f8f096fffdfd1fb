"""
Run price ingestion jobs from the command line.

Usage:
    python -m mtg_ingest.scripts.run_migration json AllPrices.json [--no-skip-existing]
    python -m mtg_ingest.scripts.run_migration csv export.csv [--conflict update]
    python -m mtg_ingest.scripts.run_migration price-history price-history.json [--backup FILE]
    python -m mtg_ingest.scripts.run_migration export out.json [--start 2024-01-01 --end 2024-01-31]
    python -m mtg_ingest.scripts.run_migration history [--limit 20] [--type mtgjson]
    python -m mtg_ingest.scripts.run_migration stats
    python -m mtg_ingest.scripts.run_migration validate [--sample-size 500] [--skip-prices]

Global options:
    --database-url: Override MTG_INGEST_DATABASE_URL
    --batch-size: Rows per batch (default from settings)
    --dry-run: Run every step except writes
"""
import argparse
import asyncio
from datetime import date

import structlog

from mtg_ingest.core.config import settings
from mtg_ingest.core.constants import ConflictResolution, ImportType
from mtg_ingest.core.logging import setup_logging
from mtg_ingest.db.session import create_engine, create_session_maker, init_models
from mtg_ingest.services.migration.base import MigrationResult
from mtg_ingest.services.migration.csv_importer import CsvImportOptions
from mtg_ingest.services.migration.json_migration import JsonMigrationOptions
from mtg_ingest.services.migration.manager import MigrationManager
from mtg_ingest.services.migration.price_history import (
    PriceHistoryOptions,
    export_price_history,
)

logger = structlog.get_logger()


def print_banner(title: str) -> None:
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}\n")


def print_result(result: MigrationResult | None) -> None:
    if result is None:
        print("  No result recorded")
        return
    print_banner("Migration Complete!" if result.success else "Migration Failed")
    print(f"  Job: {result.job_id}")
    print(f"  Processed: {result.processed:,}")
    print(f"  Failed: {result.failed:,}")
    print(f"  Skipped: {result.skipped:,}")
    print(f"  Duration: {result.duration_ms / 1000:.1f} seconds")
    for key, value in result.stats.items():
        print(f"  {key}: {value}")
    if result.warnings:
        print(f"\n  Warnings ({len(result.warnings)}):")
        for warning in result.warnings[:settings.error_sample_size]:
            print(f"    - {warning}")
    print(f"{'='*60}\n")


async def wait_with_progress(manager: MigrationManager, job_id: str) -> MigrationResult | None:
    """Wait for a job, logging progress every few seconds."""
    waiter = asyncio.ensure_future(manager.wait_for(job_id))
    while True:
        done, _ = await asyncio.wait({waiter}, timeout=5)
        if done:
            return waiter.result()
        progress = manager.get_progress(job_id)
        if progress:
            logger.info(
                "Progress",
                phase=progress.phase.value,
                processed=progress.processed,
                failed=progress.failed,
                total=progress.total,
                percentage=progress.percentage,
            )


async def run(args: argparse.Namespace) -> int:
    engine = create_engine(args.database_url)
    await init_models(engine)
    manager = MigrationManager(create_session_maker(engine))

    try:
        if args.command == "json":
            options = JsonMigrationOptions(
                batch_size=args.batch_size,
                dry_run=args.dry_run,
                skip_existing=args.skip_existing,
                require_descriptors=args.require_descriptors,
            )
            job_id = await manager.start_json_import(args.path, options)
        elif args.command == "csv":
            options = CsvImportOptions(
                batch_size=args.batch_size,
                dry_run=args.dry_run,
                conflict_resolution=ConflictResolution(args.conflict),
                validate_cards=not args.no_validate,
                fuzzy_matching=not args.no_fuzzy,
                delimiter=args.delimiter,
                encoding=args.encoding,
                resume_from_checkpoint=args.resume,
            )
            price_date = date.fromisoformat(args.price_date) if args.price_date else None
            job_id = await manager.start_csv_import(args.path, options, price_date)
        elif args.command == "price-history":
            options = PriceHistoryOptions(
                batch_size=args.batch_size,
                dry_run=args.dry_run,
                resume_from_checkpoint=args.resume,
            )
            job_id = await manager.start_price_history_migration(
                args.path, options, backup_file=args.backup
            )
        elif args.command == "export":
            date_range = None
            if args.start and args.end:
                date_range = (date.fromisoformat(args.start), date.fromisoformat(args.end))
            async with manager.session_maker() as db:
                export = await export_price_history(db, args.path, date_range)
            print_banner("Price History Exported")
            print(f"  Cards: {len(export[0]['cards']):,}")
            print(f"  Output: {args.path}\n")
            return 0
        elif args.command == "history":
            print_banner("Import History")
            import_type = ImportType(args.type) if args.type else None
            for log in await manager.get_history(args.limit, import_type):
                print(
                    f"  [{log.id}] {log.import_type:<25} {log.status:<10} "
                    f"processed={log.records_processed} failed={log.records_failed} "
                    f"started={log.started_at.isoformat()}"
                )
            print()
            return 0
        elif args.command == "validate":
            report = await manager.validate_data(
                check_cards=not args.skip_cards,
                check_prices=not args.skip_prices,
                check_sets=not args.skip_sets,
                sample_size=args.sample_size,
            )
            print_banner("Sample Validation")
            for table in ("cards", "prices", "sets"):
                if table not in report:
                    continue
                section = report[table]
                print(
                    f"  {table}: checked={section['items_checked']} "
                    f"errors={len(section['errors'])} warnings={len(section['warnings'])}"
                )
                for issue in (section["errors"] + section["warnings"])[:settings.error_sample_size]:
                    print(f"    - {issue['item']} {issue['field']}: {issue['message']}")
            print(f"\n  Valid: {report['overall']['valid']}\n")
            return 0 if report["overall"]["valid"] else 1
        else:
            stats = await manager.get_database_stats()
            integrity = await manager.check_integrity()
            print_banner("Database Stats")
            for key, value in stats.items():
                print(f"  {key}: {value}")
            print(f"\n  Integrity valid: {integrity['valid']}")
            for issue in integrity["issues"]:
                print(f"    - {issue['message']}")
            print()
            return 0

        result = await wait_with_progress(manager, job_id)
        print_result(result)
        return 0 if result and result.success else 1
    finally:
        await manager.shutdown()
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run MTG price ingestion jobs")
    parser.add_argument("--database-url", default=None, help="Database URL override")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.default_batch_size,
        help=f"Rows per batch (default: {settings.default_batch_size})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Run every step except writes")
    parser.add_argument("--debug", action="store_true", help="Console logging at DEBUG level")

    sub = parser.add_subparsers(dest="command", required=True)

    json_cmd = sub.add_parser("json", help="Import an MTGJSON price file")
    json_cmd.add_argument("path")
    json_cmd.add_argument(
        "--no-skip-existing",
        dest="skip_existing",
        action="store_false",
        help="Overwrite existing card and set rows",
    )
    json_cmd.add_argument(
        "--require-descriptors",
        action="store_true",
        help="Reject entries without name/setCode instead of using placeholders",
    )

    csv_cmd = sub.add_parser("csv", help="Import a Cardsphere CSV export")
    csv_cmd.add_argument("path")
    csv_cmd.add_argument(
        "--conflict",
        choices=[c.value for c in ConflictResolution],
        default=ConflictResolution.SKIP.value,
        help="What to do when today's price already exists (default: skip)",
    )
    csv_cmd.add_argument("--no-validate", action="store_true", help="Trust the UUID column")
    csv_cmd.add_argument("--no-fuzzy", action="store_true", help="Disable fuzzy name matching")
    csv_cmd.add_argument("--delimiter", default=",")
    csv_cmd.add_argument("--encoding", default="utf-8-sig")
    csv_cmd.add_argument("--price-date", default=None, help="Price date (YYYY-MM-DD, default today)")
    csv_cmd.add_argument("--resume", action="store_true", help="Resume from the last checkpoint")

    history_cmd = sub.add_parser("price-history", help="Migrate legacy price-history.json")
    history_cmd.add_argument("path")
    history_cmd.add_argument("--backup", default=None, help="Copy the file here before migrating")
    history_cmd.add_argument("--resume", action="store_true", help="Resume from the last checkpoint")

    export_cmd = sub.add_parser("export", help="Export prices as legacy price-history.json")
    export_cmd.add_argument("path")
    export_cmd.add_argument("--start", default=None, help="First date (YYYY-MM-DD)")
    export_cmd.add_argument("--end", default=None, help="Last date (YYYY-MM-DD)")

    log_cmd = sub.add_parser("history", help="Show recent import log entries")
    log_cmd.add_argument("--limit", type=int, default=20)
    log_cmd.add_argument(
        "--type",
        choices=[t.value for t in ImportType],
        default=None,
        help="Only show jobs of this type",
    )

    sub.add_parser("stats", help="Show store stats and integrity checks")

    validate_cmd = sub.add_parser("validate", help="Check random samples of stored rows")
    validate_cmd.add_argument("--sample-size", type=int, default=None, help="Rows sampled per table")
    validate_cmd.add_argument("--skip-cards", action="store_true")
    validate_cmd.add_argument("--skip-prices", action="store_true")
    validate_cmd.add_argument("--skip-sets", action="store_true")

    return parser


def main() -> int:
    args = build_parser().parse_args()
    setup_logging(debug=args.debug or None)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
