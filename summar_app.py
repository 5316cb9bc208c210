#!/usr/bin/env python3
"""
Summar Panel launcher.

    summar-panel                      # empty panel
    summar-panel --load               # import the newest snapshot at startup
    summar-panel --task "pdf summary" -- summarize-cli report.pdf
    summar-panel --task "pdf summary" --stat-id run-42 -- summarize-cli report.pdf
"""
import argparse
import sys
from pathlib import Path

from PyQt6.QtWidgets import QApplication, QMainWindow

from summar.constants import APP_NAME, APP_VERSION, logger, setup_logging
from summar.output_view import OutputPanel
from summar.settings import PanelSettings, load_config


def _parse_args(argv):
    parser = argparse.ArgumentParser(
        prog="summar-panel",
        description=f"{APP_NAME} {APP_VERSION}: streaming output and conversation panel.",
    )
    parser.add_argument("--load", action="store_true",
                        help="import the most recent conversation snapshot on start")
    parser.add_argument("--snapshot-dir", default=None,
                        help="override the configured snapshot directory")
    parser.add_argument("--task", metavar="LABEL", default=None,
                        help="run COMMAND and stream its output into a record labelled LABEL")
    parser.add_argument("--stat-id", default="",
                        help="correlation id stored with the --task record")
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="command for --task (prefix with --)")
    return parser.parse_args(argv)


def main(argv=None):
    """Application entry point."""
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    config = load_config()
    setup_logging(config)
    settings = PanelSettings.from_config(config)
    if args.snapshot_dir:
        settings.snapshot_directory = Path(args.snapshot_dir).expanduser()

    app = QApplication(sys.argv[:1])
    app.setApplicationName(APP_NAME)
    app.setApplicationVersion(APP_VERSION)
    logger.info(f"Application starting (version {APP_VERSION})")

    panel = OutputPanel(settings)
    if settings.auto_cleanup_minutes > 0:
        try:
            deleted = panel.persistence.cleanup_old(settings.auto_cleanup_minutes)
            logger.info(f"Startup cleanup removed {deleted} old snapshot(s)")
        except OSError as e:
            logger.error(f"Startup cleanup failed: {e}")
    if args.load:
        loaded = panel.persistence.import_sync()
        logger.info(f"Startup load imported {loaded} record(s)")

    command = list(args.command or [])
    if command[:1] == ["--"]:
        command = command[1:]
    if args.task and command:
        panel.start_task(args.task, command, stat_id=args.stat_id)
    elif args.task:
        logger.warning("--task given without a command; ignoring")

    window = QMainWindow()
    window.setWindowTitle(APP_NAME)
    window.setCentralWidget(panel)
    window.resize(480, 720)
    window.show()
    app.aboutToQuit.connect(panel.shutdown)

    exit_code = app.exec()
    logger.info(f"Application exiting (code {exit_code})")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
