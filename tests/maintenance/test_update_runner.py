"""Tests for version comparison and the update wizard."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from agora.config import Settings
from agora.config_store import ConfigStore, installed_version
from agora.db.models import Config
from agora.maintenance.steps import ProgressState, Step, StepType
from agora.maintenance.update import UPDATE_STEPS, Update, applicable_steps, compare_versions


def _value_step(name: str, value: str | None) -> Step:
    payload = {"name": name}
    if value is not None:
        payload["value"] = value
    return Step(name=name, table="agora_config", call="update_value", payload=payload)


STEPS_120 = {"1.2.0": [_value_step("hot_minimum", "30")]}


class TestCompareVersions:
    def test_numeric_not_lexical(self):
        assert compare_versions("0.10.0", "0.9.9") == 1
        assert compare_versions("0.9.9", "0.10.0") == -1

    def test_missing_parts_are_zero(self):
        assert compare_versions("1.2", "1.2.0") == 0
        assert compare_versions("1", "1.0.1") == -1

    def test_equal(self):
        assert compare_versions("0.3.0", "0.3.0") == 0

    def test_none_counts_as_zero(self):
        assert compare_versions(None, "0.0.1") == -1


class TestApplicableSteps:
    def test_older_version_includes_newer_steps(self):
        assert [s.name for s in applicable_steps("1.1.9", STEPS_120)] == ["hot_minimum"]

    def test_same_or_newer_version_excludes(self):
        assert applicable_steps("1.2.0", STEPS_120) == []
        assert applicable_steps("1.3", STEPS_120) == []

    def test_map_order_is_kept(self):
        names = [s.name for s in applicable_steps("0.2.0")]
        assert names == [s.name for s in UPDATE_STEPS["0.2.1"] + UPDATE_STEPS["0.3.0"]]

    def test_version_step_closes_the_run(self):
        steps = applicable_steps("1.1.9", STEPS_120, target_version="1.2.0")
        assert steps[-1].payload == {"name": "version", "value": "1.2.0"}
        assert len([s for s in steps if s.name == "version"]) == 1

    def test_no_version_step_when_current(self):
        assert applicable_steps("1.2.0", STEPS_120, target_version="1.2.0") == []


class TestUpdateRunner:
    @pytest.mark.asyncio
    async def test_full_run_applies_values_then_version(self, installed, cache):
        db = installed
        await ConfigStore(db).set("version", "1.1.9")
        await db.commit()

        settings = Settings(app_version="1.2.0")
        update = Update(db, cache=cache, settings=settings, update_steps=STEPS_120)
        progress = ProgressState()

        first = await update.next_step(progress)
        assert first.type is StepType.SUCCESS
        assert first.percent == 50
        assert progress.recorded_version == "1.1.9"
        # version moves only with the closing step
        assert await installed_version(db) == "1.1.9"

        second = await update.next_step(progress)
        assert second.type is StepType.SUCCESS
        assert second.percent == 100
        assert await installed_version(db) == "1.2.0"

        hot = await db.execute(select(Config.value).where(Config.name == "hot_minimum"))
        assert hot.scalar_one() == "30"

        done = await update.next_step(progress)
        assert done.type is StepType.ERROR
        assert "already complete" in done.result

    @pytest.mark.asyncio
    async def test_nothing_to_do_when_current(self, installed, cache):
        settings = Settings(app_version="1.2.0")
        await ConfigStore(installed).set("version", "1.2.0")
        await installed.commit()

        result = await Update(installed, cache=cache, settings=settings, update_steps=STEPS_120).next_step(
            ProgressState()
        )

        assert result.type is StepType.ERROR
        assert result.percent == 100

    @pytest.mark.asyncio
    async def test_missing_value_is_error(self, installed, cache):
        update = Update(installed, cache=cache, update_steps={})
        outcome = await update.update_value(_value_step("hot_minimum", None))
        assert outcome.type is StepType.ERROR
        assert "value missing" in outcome.message

    @pytest.mark.asyncio
    async def test_missing_name_is_error(self, installed, cache):
        update = Update(installed, cache=cache, update_steps={})
        step = Step(name="broken", table="agora_config", call="update_value", payload={"value": "1"})
        outcome = await update.update_value(step)
        assert outcome.type is StepType.ERROR
        assert "name missing" in outcome.message

    @pytest.mark.asyncio
    async def test_update_drops_cached_config(self, installed, cache):
        store = ConfigStore(installed, cache)
        assert await store.get("merge_posts") == "1"

        update = Update(installed, cache=cache, update_steps={})
        await update.update_value(_value_step("merge_posts", "0"))

        assert await ConfigStore(installed, cache).get("merge_posts") == "0"
