"""Generic one-step-per-request wizard engine.

A wizard is an ordered list of Steps. Every HTTP request advances exactly one
step (forward mode) and returns a StepResult the UI can show, together with
the updated ProgressState that the caller persists in the client session.

Drop mode walks the reversible steps backwards. Policy: drops are batched,
one request keeps dropping until everything is gone or one drop fails; a
failed drop is reported and the next request resumes after it. Once the drop
list is exhausted the progress is reset and the first forward step runs in
the same request.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

import structlog

from agora.database import InfrastructureError
from agora.i18n import t

logger = structlog.get_logger()


class StepType(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Step:
    """One named unit of work. `table` is the label shown while it runs."""

    name: str
    table: str
    call: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class StepOutcome:
    type: StepType
    message: str

    @classmethod
    def success(cls, message: str) -> StepOutcome:
        return cls(StepType.SUCCESS, message)

    @classmethod
    def warning(cls, message: str) -> StepOutcome:
        return cls(StepType.WARNING, message)

    @classmethod
    def error(cls, message: str) -> StepOutcome:
        return cls(StepType.ERROR, message)


@dataclass
class StepResult:
    type: StepType
    result: str
    percent: int
    table: str | None = None
    drop: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "drop": self.drop,
            "type": self.type.value,
            "result": self.result,
            "table": self.table,
            "percent": self.percent,
        }


@dataclass
class ProgressState:
    """Wizard progress of one client. Reset to zero on completion or restart."""

    current_step: int = 0
    total_steps: int = 0
    recorded_version: str | None = None
    mode: str = "forward"

    def reset(self, mode: str = "forward") -> None:
        self.current_step = 0
        self.total_steps = 0
        self.mode = mode

    @property
    def complete(self) -> bool:
        return self.total_steps > 0 and self.current_step >= self.total_steps

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ProgressState:
        if not data:
            return cls()
        return cls(
            current_step=int(data.get("current_step", 0)),
            total_steps=int(data.get("total_steps", 0)),
            recorded_version=data.get("recorded_version"),
            mode=data.get("mode", "forward"),
        )


Handler = Callable[[Step], Awaitable[StepOutcome]]


def count_percent(current: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, round(current / total * 100))


class StepRunner:
    """Drives a fixed list of steps, one per call, through named handlers."""

    def __init__(
        self,
        handlers: Mapping[str, Handler],
        *,
        missing_message: str = "install.step_missing",
        complete_message: str = "install.already_complete",
        drop_missing_message: str = "install.drop_missing",
        reversible_call: str = "create_table",
        drop_call: str = "drop_table",
    ) -> None:
        self._handlers = handlers
        self._missing_message = missing_message
        self._complete_message = complete_message
        self._drop_missing_message = drop_missing_message
        self._reversible_call = reversible_call
        self._drop_call = drop_call

    async def run_step(self, call: str, step: Step) -> StepOutcome:
        """Invoke one handler; anything but an infrastructure failure becomes an error outcome."""
        handler = self._handlers.get(call)
        if handler is None:
            logger.error("wizard_step_unknown_call", step=step.name, call=call)
            return StepOutcome.error(t(self._missing_message))
        try:
            return await handler(step)
        except InfrastructureError:
            raise
        except Exception as exc:
            logger.exception("wizard_step_failed", step=step.name, call=call)
            return StepOutcome.error(f"{step.name}: {exc}")

    async def advance(self, steps: Sequence[Step], progress: ProgressState) -> StepResult:
        """Run the step at `progress.current_step` and move the cursor forward."""
        if progress.current_step == 0:
            progress.total_steps = len(steps)

        if progress.current_step >= progress.total_steps:
            return StepResult(type=StepType.ERROR, result=t(self._complete_message), percent=100)

        if progress.current_step >= len(steps):
            return StepResult(type=StepType.ERROR, result=t(self._missing_message), percent=100)

        step = steps[progress.current_step]
        outcome = await self.run_step(step.call, step)
        progress.current_step += 1

        logger.info(
            "wizard_step_done",
            step=step.name,
            type=outcome.type.value,
            current=progress.current_step,
            total=progress.total_steps,
        )
        return StepResult(
            type=outcome.type,
            result=outcome.message,
            table=step.table,
            percent=count_percent(progress.current_step, progress.total_steps),
        )

    def drops(self, steps: Sequence[Step]) -> list[Step]:
        """Reversible steps, last created first."""
        return [step for step in reversed(steps) if step.call == self._reversible_call]

    async def drop(self, steps: Sequence[Step], progress: ProgressState) -> StepResult:
        """Undo reversible steps in a batch, then start the forward run."""
        if progress.mode != "drop":
            progress.reset(mode="drop")

        drops = self.drops(steps)
        if drops:
            if progress.current_step == 0:
                progress.total_steps = len(drops)
            while progress.current_step < progress.total_steps:
                if progress.current_step >= len(drops):
                    return StepResult(
                        type=StepType.ERROR,
                        result=t(self._drop_missing_message),
                        percent=100,
                        drop=True,
                    )
                step = drops[progress.current_step]
                outcome = await self.run_step(self._drop_call, step)
                progress.current_step += 1
                if outcome.type is not StepType.SUCCESS:
                    return StepResult(
                        type=outcome.type,
                        result=outcome.message,
                        table=step.table,
                        percent=count_percent(progress.current_step, progress.total_steps),
                        drop=True,
                    )
            logger.info("wizard_drop_complete", dropped=progress.total_steps)

        progress.reset()
        return await self.advance(steps, progress)
