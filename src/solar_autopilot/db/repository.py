"""Data access layer for the audit tables."""

from __future__ import annotations

import json
import logging
from typing import Any

import aiosqlite

from solar_autopilot.control.decision import Decision
from solar_autopilot.control.dispatcher import Command

logger = logging.getLogger(__name__)


class Repository:
    """Audit sink backed by SQLite, plus history queries."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    # ── Decisions ───────────────────────────────────────────

    async def record_decision(self, decision: Decision) -> int:
        async with self.db.execute(
            """INSERT INTO charging_decisions
               (decided_at, action, reasons_json, strategy, source)
               VALUES (?, ?, ?, ?, ?)""",
            (
                decision.timestamp.isoformat(),
                decision.action.value,
                json.dumps(list(decision.reasons)),
                decision.strategy.value if decision.strategy else None,
                decision.source,
            ),
        ) as cursor:
            row_id = cursor.lastrowid
        await self.db.commit()
        return row_id  # type: ignore[return-value]

    async def get_decision_history(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent decisions first, reasons decoded."""
        async with self.db.execute(
            "SELECT * FROM charging_decisions ORDER BY decided_at DESC, id DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        history = []
        for row in rows:
            entry = dict(row)
            entry["reasons"] = json.loads(entry.pop("reasons_json"))
            history.append(entry)
        return history

    # ── Commands ────────────────────────────────────────────

    async def record_command(self, command: Command) -> int:
        async with self.db.execute(
            """INSERT INTO inverter_commands
               (issued_at, inverter_id, topic, value, success)
               VALUES (?, ?, ?, ?, ?)""",
            (
                command.issued_at.isoformat(),
                command.inverter_id,
                command.topic,
                command.value,
                1 if command.success else 0,
            ),
        ) as cursor:
            row_id = cursor.lastrowid
        await self.db.commit()
        return row_id  # type: ignore[return-value]

    async def get_command_history(
        self,
        limit: int = 50,
        inverter_id: str | None = None,
    ) -> list[dict[str, Any]]:
        if inverter_id is None:
            query = "SELECT * FROM inverter_commands ORDER BY issued_at DESC, id DESC LIMIT ?"
            params: tuple = (limit,)
        else:
            query = (
                "SELECT * FROM inverter_commands WHERE inverter_id = ? "
                "ORDER BY issued_at DESC, id DESC LIMIT ?"
            )
            params = (inverter_id, limit)
        async with self.db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        history = []
        for row in rows:
            entry = dict(row)
            entry["success"] = bool(entry["success"])
            history.append(entry)
        return history

    # ── Config versions ─────────────────────────────────────

    async def get_config_versions(self, limit: int = 20) -> list[dict[str, Any]]:
        async with self.db.execute(
            "SELECT id, changed_keys, created_at, source FROM config_versions "
            "ORDER BY id DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [dict(r) for r in rows]
