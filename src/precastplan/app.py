from __future__ import annotations

import argparse
import logging
from pathlib import Path

from nicegui import app, ui

from precastplan.api.routes import register_routes
from precastplan.data.db import Db
from precastplan.data.repository import Repository
from precastplan.logging_conf import configure_logging
from precastplan.scheduler.service import ScheduleService
from precastplan.settings import Settings, default_db_path
from precastplan.ui.pages import register_pages

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Precast mold scheduler")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser


def build_service(settings: Settings) -> tuple[Repository, ScheduleService]:
    db = Db(settings.db_path)
    db.ensure_schema()
    repo = Repository(db)
    return repo, ScheduleService(repo)


def main() -> None:
    args = build_arg_parser().parse_args()
    settings = Settings(
        db_path=args.db or default_db_path(),
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )
    configure_logging(settings.log_level)
    logger.info("Using database %s", settings.db_path)

    repo, service = build_service(settings)
    register_routes(app, service)
    register_pages(repo, service)

    ui.run(host=settings.host, port=settings.port, title="Precast planner", reload=False)


if __name__ in {"__main__", "__mp_main__"}:
    main()
