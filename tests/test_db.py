"""Tests for database engine and repository."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from solar_autopilot.battery.strategy import Strategy
from solar_autopilot.control.decision import Action, Decision
from solar_autopilot.control.dispatcher import Command
from solar_autopilot.db.engine import init_db
from solar_autopilot.db.migrations import get_schema_version
from solar_autopilot.db.models import SCHEMA_VERSION
from solar_autopilot.db.repository import Repository

T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
class TestMigrations:
    async def test_fresh_schema(self, db) -> None:
        assert await get_schema_version(db) == SCHEMA_VERSION
        async with db.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cursor:
            tables = {row[0] for row in await cursor.fetchall()}
        assert {"schema_version", "config_versions", "charging_decisions", "inverter_commands"} <= tables

    async def test_reopen_keeps_schema(self, tmp_path) -> None:
        path = tmp_path / "audit.db"
        first = await init_db(path)
        await first.close()
        second = await init_db(path)
        assert await get_schema_version(second) == SCHEMA_VERSION
        await second.close()


@pytest.mark.asyncio
class TestRepository:
    async def test_record_and_read_decision(self, repo: Repository) -> None:
        decision = Decision(
            action=Action.CHARGE_GRID,
            reasons=("Dynamic optimal price", "Strategy: PRICE_SENSITIVE"),
            timestamp=T0,
            strategy=Strategy.PRICE_SENSITIVE,
        )
        row_id = await repo.record_decision(decision)
        assert row_id > 0

        history = await repo.get_decision_history()
        assert len(history) == 1
        assert history[0]["action"] == "CHARGE_GRID"
        assert history[0]["reasons"] == ["Dynamic optimal price", "Strategy: PRICE_SENSITIVE"]
        assert history[0]["strategy"] == "PRICE_SENSITIVE"
        assert history[0]["source"] == "rules"

    async def test_decision_without_strategy(self, repo: Repository) -> None:
        await repo.record_decision(Decision(Action.IDLE, ("Engine disabled",), T0, source="engine"))
        history = await repo.get_decision_history()
        assert history[0]["strategy"] is None

    async def test_decision_history_newest_first(self, repo: Repository) -> None:
        for i, action in enumerate([Action.MONITOR, Action.CHARGE_SOLAR, Action.STOP_CHARGING]):
            await repo.record_decision(Decision(action, ("r",), T0 + timedelta(minutes=5 * i)))
        history = await repo.get_decision_history(limit=2)
        assert [h["action"] for h in history] == ["STOP_CHARGING", "CHARGE_SOLAR"]

    async def test_record_commands_success_and_failure(self, repo: Repository) -> None:
        await repo.record_command(Command("inverter_1", "solar/inverter_1/grid_charge/set", "Enabled", True, T0))
        await repo.record_command(Command("inverter_2", "solar/inverter_2/grid_charge/set", "Enabled", False, T0))

        history = await repo.get_command_history()
        assert len(history) == 2
        by_inverter = {h["inverter_id"]: h for h in history}
        assert by_inverter["inverter_1"]["success"] is True
        assert by_inverter["inverter_2"]["success"] is False
        assert by_inverter["inverter_1"]["value"] == "Enabled"

    async def test_command_history_filtered_by_inverter(self, repo: Repository) -> None:
        await repo.record_command(Command("inverter_1", "t1", "v", True, T0))
        await repo.record_command(Command("inverter_2", "t2", "v", True, T0))
        history = await repo.get_command_history(inverter_id="inverter_2")
        assert [h["topic"] for h in history] == ["t2"]

    async def test_config_versions(self, repo: Repository, config_manager) -> None:
        await config_manager.save_version(repo.db, changed_keys=["battery"])
        versions = await repo.get_config_versions()
        assert len(versions) == 1
        assert versions[0]["source"] == "user"
