"""Audit database for charging decisions and inverter commands."""

from solar_autopilot.db.engine import close_db, init_db
from solar_autopilot.db.repository import Repository

__all__ = ["close_db", "init_db", "Repository"]
