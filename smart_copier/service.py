"""
Headless service runner and command line for Smart Copier.

Runs the sync engine without any UI until interrupted:
    python -m smart_copier start             (blocks until Ctrl-C / SIGTERM)

Inspection helpers:
    python -m smart_copier history [N]       Print the last N ledger entries
    python -m smart_copier check-config      Validate the configuration
"""

import logging
import logging.handlers
import signal
import sys
import threading

from smart_copier import __app_name__, __version__
from smart_copier.config import Config, ConfigError, get_log_path
from smart_copier.engine import SyncEngine
from smart_copier.records import FileRecordStore
from smart_copier.state import RuntimeState

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: Config) -> None:
    """Configure rotating file log and stderr handler."""
    log_path = get_log_path()
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter(_LOG_FORMAT)

    # Rotating file handler
    max_bytes = config.max_log_size_mb * 1024 * 1024
    fh = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    root_logger.addHandler(fh)

    # Stderr handler (for development)
    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)


def build_engine(config: Config) -> SyncEngine:
    """
    Open the ledger, reconcile interrupted copies and start the engine.

    Returns the running engine so the caller can stop it.
    """
    settings = config.to_settings()
    store = FileRecordStore.from_path(config.database_path)
    store.fail_in_progress()

    state = RuntimeState()
    engine = SyncEngine(store, state)
    if not config.is_configured():
        logger.warning("No associations configured; nothing to sync.")
    engine.start(settings)
    return engine


def _run_foreground(config: Config) -> int:
    """Run the sync engine in the foreground until SIGINT/SIGTERM."""
    setup_logging(config)
    logger.info("%s %s starting.", __app_name__, __version__)
    try:
        engine = build_engine(config)
    except ConfigError as exc:
        logger.error("Cannot start sync: %s", exc)
        return 1

    stop = threading.Event()

    def _handler(sig, frame):
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    print(f"{__app_name__} running (press Ctrl-C to stop)…")
    while not stop.is_set():
        stop.wait(1)
    engine.stop()
    engine.store.close()
    print(f"{__app_name__} stopped.")
    return 0


def _print_history(config: Config, limit: int) -> int:
    store = FileRecordStore.from_path(config.database_path)
    try:
        records = store.list_history(limit)
    finally:
        store.close()
    if not records:
        print("No files recorded yet.")
        return 0
    for rec in records:
        line = f"{rec.first_seen_at}  {rec.status:<8} {rec.size:>12,}  {rec.source_path}"
        if rec.error_message:
            line += f"  ({rec.error_message})"
        print(line)
    return 0


def _check_config(config: Config) -> int:
    try:
        settings = config.to_settings()
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}")
        return 1
    print(f"Config file:      {config.path}")
    print(f"Database:         {config.database_path}")
    print(f"Scan interval:    {settings.scan_interval_seconds}s")
    print(f"Detection mode:   {settings.detection_mode.value}")
    print(f"Dry run:          {settings.dry_run}")
    print(f"Ignored:          {', '.join(sorted(settings.ignored_extensions)) or '-'}")
    print("Associations:")
    for assoc in settings.associations:
        print(f"  [{assoc.id}] {assoc.input} -> {assoc.output}")
    if not settings.associations:
        print("  (none)")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point for the command line."""
    args = sys.argv[1:] if argv is None else argv
    cmd = args[0] if args else "start"
    config = Config()

    if cmd in ("start", "run"):
        sys.exit(_run_foreground(config))
    elif cmd == "history":
        try:
            limit = int(args[1]) if len(args) > 1 else 200
        except ValueError:
            _show_help()
            sys.exit(2)
        sys.exit(_print_history(config, limit))
    elif cmd == "check-config":
        sys.exit(_check_config(config))
    else:
        _show_help()
        sys.exit(2)


def _show_help() -> None:
    print(f"{__app_name__} {__version__}")
    print()
    print("Usage:")
    print("  python -m smart_copier start           Run in foreground (Ctrl-C to stop)")
    print("  python -m smart_copier history [N]     Show the last N copied files")
    print("  python -m smart_copier check-config    Validate the configuration")


if __name__ == "__main__":
    main()
