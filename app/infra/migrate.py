from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from loguru import logger

from app.infra.db import DATABASE_URL

ROOT = Path(__file__).resolve().parents[2]


def alembic_config(database_url: str | None = None) -> Config:
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "infra" / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url or DATABASE_URL)
    return config


def run_upgrade_head(database_url: str | None = None) -> None:
    logger.info("upgrading warehouse schema to head")
    command.upgrade(alembic_config(database_url), "head")


if __name__ == "__main__":
    run_upgrade_head()
