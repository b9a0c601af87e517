"""Starts and stops the worker processes of every stage."""

import logging
import multiprocessing
from collections.abc import Callable, Iterable
from typing import Any

from castflow.queue.queues import PipelineQueues
from castflow.queue.stages import STAGES, StageSpec, get_stage
from castflow.queue.worker import run_stage_worker

logger = logging.getLogger(__name__)


def downstream_of(stage_name: str) -> tuple[str, ...]:
    """Queues a stage enqueues into."""
    return get_stage(stage_name).downstream


def topological_order(stages: dict[str, StageSpec] = STAGES) -> list[str]:
    """Order stages so that every producer precedes its consumers.

    Raises:
        ValueError: If the stages enqueue into each other in a cycle
    """
    order: list[str] = []
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(name: str, path: tuple[str, ...]) -> None:
        if name in done:
            return
        if name in visiting:
            raise ValueError(f"Stage cycle: {' -> '.join((*path, name))}")
        visiting.add(name)
        for child in stages[name].downstream:
            visit(child, (*path, name))
        visiting.discard(name)
        done.add(name)
        order.append(name)

    for name in stages:
        visit(name, ())
    order.reverse()
    return order


def setup_queues(queues: PipelineQueues) -> dict[str, int]:
    """Create every stage queue and report how many jobs each holds."""
    topological_order()
    counts = {queue.name: queue.count for queue in queues.all_queues()}
    logger.info("Queues ready: %s", counts)
    return counts


class Orchestrator:
    """Runs worker processes for each selected stage.

    Each RQ worker process runs one job at a time, so a stage's
    ``concurrency`` is its process count. ``max_processes`` caps the stage
    defaults; explicit ``concurrency`` overrides are used as given. Consumers
    are started before the stages that feed them.
    """

    def __init__(
        self,
        stage_names: Iterable[str] | None = None,
        concurrency: dict[str, int] | None = None,
        burst: bool = False,
        target: Callable[..., None] = run_stage_worker,
        max_processes: int | None = None,
    ) -> None:
        selected = set(stage_names) if stage_names else set(STAGES)
        for name in selected:
            get_stage(name)
        self.stage_names = [
            name for name in reversed(topological_order()) if name in selected
        ]
        self.concurrency = concurrency or {}
        self.burst = burst
        self.target = target
        self.max_processes = max_processes
        self.processes: list[Any] = []

    def process_count(self, stage_name: str) -> int:
        if stage_name in self.concurrency:
            return self.concurrency[stage_name]
        default = get_stage(stage_name).concurrency
        if self.max_processes:
            return min(default, self.max_processes)
        return default

    def start(self) -> None:
        for name in self.stage_names:
            count = self.process_count(name)
            for index in range(count):
                process = multiprocessing.Process(
                    target=self.target,
                    args=(name, self.burst),
                    name=f"{name}-{index}",
                    daemon=False,
                )
                process.start()
                self.processes.append(process)
            logger.info("Started %d worker(s) for %s", count, name)

    def join(self) -> None:
        for process in self.processes:
            process.join()

    def stop(self, timeout: float = 30.0) -> None:
        """Ask every worker to finish its current job, then wait for it."""
        for process in self.processes:
            if process.is_alive():
                process.terminate()
        for process in self.processes:
            process.join(timeout)
            if process.is_alive():
                logger.warning("Worker %s did not stop, killing", process.name)
                process.kill()
        self.processes.clear()
