"""
Release step: migrate the database to head, then seed roles and the bootstrap admin.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts import init_db  # noqa: E402

logger = logging.getLogger("wellness.release")


def database_url_for_release() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for a release.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release a production deploy onto sqlite. Point DATABASE_URL at Postgres.")
    return db_url


def run_release() -> None:
    db_url = database_url_for_release()
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    logger.info("Upgrading schema to head")
    command.upgrade(cfg, "head")
    init_db.seed_only(database_url=db_url)
    logger.info("Release finished")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_release()


if __name__ == "__main__":
    main()
