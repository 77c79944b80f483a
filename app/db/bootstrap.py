# app/db/bootstrap.py
import logging
import os

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

def alembic_config() -> Config:
    # Point explicitly at alembic.ini and migrations/
    cfg = Config(os.path.join(BASE_DIR, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(BASE_DIR, "migrations"))
    return cfg

def run_migrations() -> None:
    command.upgrade(alembic_config(), "head")
    logger.info("database schema at head")
