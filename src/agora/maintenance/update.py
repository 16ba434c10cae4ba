"""Update wizard: config mutations keyed by the version that introduced them."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from agora.cache import Cache
from agora.config import Settings, get_settings
from agora.config_store import ConfigStore, installed_version
from agora.database import connection_of
from agora.i18n import t
from agora.maintenance.steps import ProgressState, Step, StepOutcome, StepResult, StepRunner

logger = structlog.get_logger()

# Insertion order is application order.
UPDATE_STEPS: dict[str, list[Step]] = {
    "0.2.1": [
        Step(
            name="members_visible",
            table="agora_config",
            call="update_value",
            payload={"name": "members_visible", "value": "1"},
        ),
    ],
    "0.3.0": [
        Step(
            name="merge_posts",
            table="agora_config",
            call="update_value",
            payload={"name": "merge_posts", "value": "1"},
        ),
        Step(
            name="registration_off",
            table="agora_config",
            call="update_value",
            payload={"name": "registration_off", "value": "0"},
        ),
    ],
}


def _parts(version: str | None) -> list[int]:
    parts = []
    for chunk in (version or "0").split("."):
        try:
            parts.append(int(chunk))
        except ValueError:
            parts.append(0)
    return parts


def compare_versions(a: str | None, b: str | None) -> int:
    """Compare dotted versions numerically: -1, 0 or 1. Missing parts count as 0."""
    left, right = _parts(a), _parts(b)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def applicable_steps(
    recorded_version: str | None,
    update_steps: dict[str, list[Step]] | None = None,
    target_version: str | None = None,
) -> list[Step]:
    """Steps of every version newer than `recorded_version`, in map order.

    When `target_version` is newer than the recorded one, a closing step
    records it, so the version moves exactly once per completed run.
    """
    update_steps = UPDATE_STEPS if update_steps is None else update_steps
    steps: list[Step] = []
    for version, version_steps in update_steps.items():
        if compare_versions(recorded_version, version) < 0:
            steps.extend(version_steps)
    if target_version and compare_versions(recorded_version, target_version) < 0:
        steps.append(
            Step(
                name="version",
                table="agora_config",
                call="update_value",
                payload={"name": "version", "value": target_version},
            )
        )
    return steps


class Update:
    """Update wizard bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        cache: Cache | None = None,
        settings: Settings | None = None,
        update_steps: dict[str, list[Step]] | None = None,
    ) -> None:
        self._db = db
        self._config = ConfigStore(db, cache)
        self._settings = settings or get_settings()
        self._update_steps = update_steps
        self.runner = StepRunner(
            {"update_value": self.update_value},
            missing_message="update.step_missing",
            complete_message="update.already_complete",
        )

    def steps(self, progress: ProgressState) -> list[Step]:
        return applicable_steps(progress.recorded_version, self._update_steps, self._settings.app_version)

    async def next_step(self, progress: ProgressState) -> StepResult:
        """Advance one update step; the version is read once, at the start of a run."""
        await connection_of(self._db)
        if progress.current_step == 0:
            progress.recorded_version = await installed_version(self._db)
        return await self.runner.advance(self.steps(progress), progress)

    async def update_value(self, step: Step) -> StepOutcome:
        name = step.payload.get("name")
        value = step.payload.get("value")
        if name is None:
            return StepOutcome.error(t("update.name_missing"))
        if value is None:
            return StepOutcome.error(t("update.value_missing"))

        try:
            await self._config.set(name, value)
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("config_update_failed", name=name)
            return StepOutcome.error(f"{t('update.value_error')}: {e}")
        return StepOutcome.success(t("update.value_set", name=name, value=value))
