"""WebInsight CLI: main application entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path.home() / ".webinsight" / "logs"
DEFAULT_STORE = Path.home() / ".webinsight" / "content.json"


def configure_logging(log_file: Path, level: str, to_stderr: bool) -> None:
    """Rotating file log, plus stderr when no TUI owns the terminal."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)


def _load_config(path: str | None):
    from webinsight.engine.yaml_config import WebInsightConfig, find_config, load_yaml_config

    log = logging.getLogger(__name__)
    if path:
        explicit = Path(path)
        log.info("Using explicit config path: %s (exists=%s)", explicit, explicit.exists())
        return load_yaml_config(explicit)
    found = find_config()
    if found is not None:
        log.info("Auto-discovered config: %s", found)
        return load_yaml_config(found)
    log.info("No config file found; using defaults")
    return WebInsightConfig()


async def _run_demo(args, config) -> int:
    from webinsight.adapters.runtime import build_runtime
    from webinsight.demo import run_demo

    store_path = Path(args.store).expanduser() if args.store else None
    runtime = build_runtime(config, store_path=store_path, offline=args.offline)
    await runtime.start()
    try:
        result = await run_demo(runtime)
    finally:
        await runtime.shutdown()
    return 0 if result["filename"] else 1


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="webinsight",
        description="WebInsight: capture pages, tag them and build reports",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: .webinsight/webinsight.yaml or webinsight.yaml)",
    )
    parser.add_argument(
        "--demo", action="store_true",
        help="Run a scripted capture-and-report session headless and exit",
    )
    parser.add_argument(
        "--offline", action="store_true",
        help="Use offline key points instead of the Gemini API",
    )
    parser.add_argument(
        "--store", metavar="PATH",
        help=f"JSON content store (default: {DEFAULT_STORE}; demo runs in memory)",
    )
    parser.add_argument(
        "--page", metavar="FILE",
        help="HTML file to open as the active tab in the TUI",
    )
    parser.add_argument(
        "--url", metavar="URL",
        help="URL the --page file was saved from (used for attribution and links)",
    )
    parser.add_argument(
        "--selection", metavar="TEXT",
        help="Text to treat as selected on the page (used by Save Selection)",
    )
    parser.add_argument(
        "--reports-dir", metavar="DIR",
        help="Directory reports are written to",
    )
    args = parser.parse_args()

    log_level = os.getenv("WEBINSIGHT_LOG_LEVEL", "INFO")
    configure_logging(LOG_DIR / "webinsight.log", log_level, to_stderr=args.demo)
    log = logging.getLogger(__name__)

    try:
        config = _load_config(args.config)
    except (OSError, ValueError) as exc:
        print(f"Failed to load config: {exc}", file=sys.stderr)
        sys.exit(2)
    if os.getenv("WEBINSIGHT_LOG_LEVEL") is None:
        logging.getLogger().setLevel(
            getattr(logging, config.engine.log_level.upper(), logging.INFO)
        )
    if args.reports_dir:
        config.engine.reports_dir = str(Path(args.reports_dir).expanduser())
    log.info("Starting WebInsight cwd=%s reports=%s", Path.cwd(), config.engine.reports_dir)

    if args.demo:
        sys.exit(asyncio.run(_run_demo(args, config)))

    # TUI mode
    from webinsight.adapters.event_bus import EventBus
    from webinsight.adapters.runtime import build_runtime
    from webinsight.demo import SAMPLE_HTML, SAMPLE_SELECTION, SAMPLE_TAB_ID, SAMPLE_URL
    from webinsight.engine.errors import WebInsightError
    from webinsight.engine.page import PageDocument
    from webinsight.shared.services.preferences import UserPreferences
    from webinsight.tui.app import PanelApp

    if args.page:
        page_path = Path(args.page).expanduser()
        html = page_path.read_text(encoding="utf-8", errors="replace")
        url = args.url or page_path.resolve().as_uri()
    else:
        html, url = SAMPLE_HTML, SAMPLE_URL
    selection = args.selection if args.selection is not None else (
        "" if args.page else SAMPLE_SELECTION
    )

    prefs = UserPreferences.load()
    if config.engine.report.preset != "standard" and prefs.report_preset == "standard":
        prefs.report_preset = config.engine.report.preset
    store_path = Path(args.store).expanduser() if args.store else DEFAULT_STORE
    try:
        runtime = build_runtime(
            config, store_path=store_path, bus=EventBus(), offline=args.offline,
        )
    except WebInsightError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    offline = args.offline or not config.inference.api_key()

    app = PanelApp(
        runtime, prefs, offline=offline,
        initial_tab=(SAMPLE_TAB_ID, PageDocument(url, html, selected_text=selection)),
    )
    app.run()


if __name__ == "__main__":
    main()
