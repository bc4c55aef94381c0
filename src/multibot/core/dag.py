"""Stage graph orchestration and fail-fast fan-out.

This module defines the two concurrency primitives every action is built
from:

- Stage / StageGraph: a static directed acyclic graph of named stages, each
  declaring its upstream dependencies.
- run_stages(): executes a StageGraph in waves, running every ready stage
  concurrently and stopping on the first failed stage.
- fan_out(): runs one Result-returning coroutine per item concurrently and
  reports the first error together with the partial successful values.

Neither primitive cancels work that has already been dispatched. "Stopping"
means dependent stages are never scheduled; in-flight siblings finish and
their results are kept as partial results.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from multibot.core.result import Err, MultibotError, Ok, ProgrammingError, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")
ItemT = TypeVar("ItemT")


class Stage(BaseModel):
    """A single named stage in an action graph.

    Attributes:
        id: Unique stage name (e.g., 'branch', 'commit')
        depends_on: Stage names that must succeed before this stage runs
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Unique stage name (e.g., 'branch')")
    depends_on: list[str] = Field(
        default_factory=list,
        description="Stage names that must succeed before this stage runs",
    )


class StageGraph(BaseModel):
    """Static dependency graph of stages for one action."""

    model_config = ConfigDict(extra="forbid")

    stages: list[Stage] = Field(default_factory=list)

    @classmethod
    def chain(cls, *names: str) -> StageGraph:
        """Build a linear graph where each stage depends on the previous one."""
        stages = [
            Stage(id=name, depends_on=[names[i - 1]] if i else []) for i, name in enumerate(names)
        ]
        return cls(stages=stages)

    def get_ready_stages(self, completed: set[str]) -> list[Stage]:
        """Return stages not yet completed whose dependencies are all satisfied."""
        return [
            stage
            for stage in self.stages
            if stage.id not in completed and all(dep in completed for dep in stage.depends_on)
        ]

    def validate_acyclic(self) -> bool:
        """Validate that the graph has no cycles using Kahn's algorithm.

        Returns:
            True if the graph is acyclic, False if cycles detected
        """
        if not self.stages:
            return True

        stage_ids = {s.id for s in self.stages}
        in_degree: dict[str, int] = {s.id: 0 for s in self.stages}
        adjacency: dict[str, list[str]] = {s.id: [] for s in self.stages}

        for stage in self.stages:
            for dep in stage.depends_on:
                if dep == stage.id:
                    return False
                if dep in stage_ids:
                    adjacency[dep].append(stage.id)
                    in_degree[stage.id] += 1

        queue = [sid for sid, deg in in_degree.items() if deg == 0]
        visited = 0

        while queue:
            current = queue.pop(0)
            visited += 1
            for neighbor in adjacency[current]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        return visited == len(self.stages)


@dataclass
class FanOut(Generic[T]):
    """Aggregate outcome of a concurrent fan-out.

    Attributes:
        values: Successful values, in input order
        error: First error by completion order, or None
    """

    values: list[T] = field(default_factory=list)
    error: MultibotError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, error: MultibotError, values: list[T] | None = None) -> FanOut[T]:
        return cls(values=values or [], error=error)


async def fan_out(
    items: Iterable[ItemT],
    fn: Callable[[ItemT], Awaitable[Result[T, MultibotError]]],
) -> FanOut[T]:
    """Run ``fn`` for every item concurrently.

    Every dispatched call runs to completion. The aggregate reports the first
    error in completion order; successful values are kept in input order.
    """
    pending = list(items)
    errors: list[MultibotError] = []

    async def _run(item: ItemT) -> Result[T, MultibotError]:
        try:
            result = await fn(item)
        except Exception as exc:
            logger.exception("Unhandled error in fan-out for %s", item)
            result = Err(_unhandled(exc, item=str(item)))
        if isinstance(result, Err):
            errors.append(result.error)
        return result

    async with asyncio.TaskGroup() as tg:
        handles = [tg.create_task(_run(item)) for item in pending]

    values = [r.value for r in (h.result() for h in handles) if isinstance(r, Ok)]
    return FanOut(values=values, error=errors[0] if errors else None)


def _unhandled(exc: Exception, **context: Any) -> ProgrammingError:
    return ProgrammingError(f"Unhandled {type(exc).__name__}: {exc}", context=context)


StageHandler = Callable[[Mapping[str, FanOut[Any]]], Awaitable[FanOut[Any]]]


@dataclass
class StageRun:
    """Outcome of running a StageGraph.

    Attributes:
        results: Outcome of every stage that ran, including a failed one
        failed_stage: Name of the first stage that failed, if any
        error: Error of the failed stage, if any
    """

    results: dict[str, FanOut[Any]] = field(default_factory=dict)
    failed_stage: str | None = None
    error: MultibotError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_stages(graph: StageGraph, handlers: Mapping[str, StageHandler]) -> StageRun:
    """Execute a stage graph wave by wave.

    Each handler receives the outcomes of all stages completed so far. A
    stage fails when its FanOut carries an error; no further wave is
    scheduled after a failure.
    """
    if not graph.validate_acyclic():
        return StageRun(error=ProgrammingError("Stage graph contains a cycle"))

    missing = [s.id for s in graph.stages if s.id not in handlers]
    if missing:
        return StageRun(
            error=ProgrammingError("No handler for stages", context={"stages": missing})
        )

    known = {s.id for s in graph.stages}
    dangling = sorted({dep for s in graph.stages for dep in s.depends_on} - known)
    if dangling:
        return StageRun(
            error=ProgrammingError("Stages depend on unknown stages", context={"stages": dangling})
        )

    async def _run_stage(stage_id: str, snapshot: Mapping[str, FanOut[Any]]) -> FanOut[Any]:
        try:
            return await handlers[stage_id](snapshot)
        except Exception as exc:
            logger.exception("Unhandled error in stage %s", stage_id)
            return FanOut.failed(_unhandled(exc, stage=stage_id))

    run = StageRun()
    completed: set[str] = set()

    while True:
        ready = graph.get_ready_stages(completed)
        if not ready:
            break

        logger.info("Running stage(s): %s", ", ".join(s.id for s in ready))
        snapshot = dict(run.results)
        async with asyncio.TaskGroup() as tg:
            handles = {s.id: tg.create_task(_run_stage(s.id, snapshot)) for s in ready}

        for stage_id, handle in handles.items():
            outcome = handle.result()
            run.results[stage_id] = outcome
            if outcome.ok:
                completed.add(stage_id)
            elif run.error is None:
                run.failed_stage = stage_id
                run.error = outcome.error

        if run.error is not None:
            logger.info("Stage %s failed; skipping dependent stages", run.failed_stage)
            break

    return run


__all__ = [
    "FanOut",
    "Stage",
    "StageGraph",
    "StageHandler",
    "StageRun",
    "fan_out",
    "run_stages",
]
