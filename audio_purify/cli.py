from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

from .app import PurifierApp
from .config import ConfigError, ProcessingMode, Settings, find_config
from .evaluators import build_artist_info, build_scoring_input
from .events import EnrichmentEvent
from .models import FatalLookupError
from .scoring import score_confidence

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


def configure_logging(level_name: str, *, color: bool = True) -> None:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter(LOG_FORMAT) if color else logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    logging.getLogger("musicbrainzngs").setLevel(logging.WARNING)


def _print_event(event: EnrichmentEvent) -> None:
    details = ", ".join(f"{key}={value}" for key, value in asdict(event).items())
    print(f"  {type(event).__name__}: {details}")


def _show(app: PurifierApp, record_id: int) -> None:
    record = app.store.read_record(record_id)
    if record is None:
        raise SystemExit(f"No record with id {record_id}")
    result = score_confidence(
        build_scoring_input(record, config=app.config),
        artist=build_artist_info(record),
        config=app.config,
    )
    print(json.dumps(record.to_record(), indent=2))
    print(f"\nScore {result.score} ({result.quality.value}), recommended {result.recommended_status.value}")
    print(result.breakdown.describe())


def _stats(app: PurifierApp) -> None:
    counts = app.store.status_counts()
    for status, count in sorted(counts.items()):
        print(f"{status:<18} {count}")
    print(f"{'average score':<18} {app.store.average_score():.1f}")


async def _play(app: PurifierApp, record_id: int, *, force: bool) -> None:
    record = app.store.read_record(record_id)
    if record is None:
        raise SystemExit(f"No record with id {record_id}")
    trigger = app.get_trigger(asyncio.get_running_loop())
    future = trigger.force_enrich(record) if force else trigger.on_track_started(record)
    if future is not None:
        outcome = await asyncio.wrap_future(future)
        if outcome is not None:
            print(f"{outcome.state.value}: {outcome.reason or ''} score={outcome.score}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Track metadata purification and enrichment")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    parser.add_argument("--no-color", action="store_true", help="Disable coloured log output")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ProcessingMode],
        help="Override the processing mode from the config file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("import", help="Read tags from the library roots into the record store")
    subparsers.add_parser("scan", help="Run the local-only scoring pass over unprocessed records")
    enrich_parser = subparsers.add_parser("enrich", help="Run background enrichment")
    enrich_parser.add_argument("--limit", type=int, default=None, help="Records per batch")
    enrich_parser.add_argument(
        "--forever",
        action="store_true",
        help="Keep running a batch every background interval",
    )
    play_parser = subparsers.add_parser("play", help="Simulate playback of a record")
    play_parser.add_argument("record_id", type=int)
    play_parser.add_argument("--force", action="store_true", help="Bypass on-play cooldowns")
    show_parser = subparsers.add_parser("show", help="Show a record with its score breakdown")
    show_parser.add_argument("record_id", type=int)
    subparsers.add_parser("stats", help="Summarise record statuses")

    args = parser.parse_args()
    configure_logging(args.log_level, color=not args.no_color)
    try:
        settings = Settings.load(find_config(args.config))
    except (ConfigError, FileNotFoundError) as exc:
        raise SystemExit(str(exc)) from exc

    app = PurifierApp.create(settings)
    if args.mode:
        app.apply_mode(args.mode)
    unsubscribe = app.events.subscribe(_print_event) if args.command in {"enrich", "play"} else None
    try:
        match args.command:
            case "import":
                print(f"Imported {app.get_importer().run()} files")
            case "scan":
                report = app.get_local_scanner().run()
                print(f"Scanned {report.scanned}, cleaned {report.cleaned}")
            case "enrich":
                if args.forever:
                    asyncio.run(app.run_background())
                else:
                    report = asyncio.run(app.get_orchestrator().run_batch(args.limit))
                    print(json.dumps(report.as_dict()))
            case "play":
                asyncio.run(_play(app, args.record_id, force=args.force))
            case "show":
                _show(app, args.record_id)
            case "stats":
                _stats(app)
            case _:
                parser.error("Unknown command")
    except FatalLookupError as exc:
        raise SystemExit(f"Lookup service rejected the request: {exc}") from exc
    finally:
        if unsubscribe:
            unsubscribe()
        stats = app.stats.snapshot()
        if stats.total:
            print(f"Session: {stats.enriched} enriched, {stats.skipped} skipped, {stats.failed} failed")
        app.close()


if __name__ == "__main__":  # pragma: no cover
    main()
