from __future__ import annotations

import os

from alembic import command
from alembic.config import Config
from loguru import logger

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def run_upgrade_head(config_path: str | None = None) -> None:
    path = config_path or ALEMBIC_CONFIG
    logger.info("Applying taskhub migrations using {}", path)
    command.upgrade(Config(path), "head")


if __name__ == "__main__":
    run_upgrade_head()
