import logging
import math
from typing import Optional, Sequence, Tuple

from locust import LoadTestShape

from config import DEFAULT_CONFIG, Stage

logger = logging.getLogger(__name__)


def _locate(stages: Sequence[Stage], elapsed: float) -> Optional[Tuple[int, float, float]]:
    """Find the active stage as (index, start users, seconds into the stage)"""
    if elapsed < 0:
        elapsed = 0.0

    start_users = 0
    stage_start = 0.0
    for index, stage in enumerate(stages):
        stage_end = stage_start + stage.duration
        if elapsed < stage_end:
            return index, start_users, elapsed - stage_start
        start_users = stage.target
        stage_start = stage_end

    return None


def target_users_at(stages: Sequence[Stage], elapsed: float) -> Optional[int]:
    """
    Number of virtual users the schedule asks for `elapsed` seconds into the run.

    Each stage ramps linearly from the previous stage's target (0 for the first
    stage) to its own target. Returns None once the schedule is exhausted.
    """
    located = _locate(stages, elapsed)
    if located is None:
        return None

    index, start_users, into_stage = located
    stage = stages[index]
    progress = into_stage / stage.duration
    users = math.ceil(start_users + (stage.target - start_users) * progress)
    return max(users, 0)


def spawn_rate_for(stages: Sequence[Stage], elapsed: float) -> float:
    """Users per second needed to follow the slope of the active stage"""
    located = _locate(stages, elapsed)
    if located is None:
        return 1.0

    index, start_users, _ = located
    stage = stages[index]
    delta = abs(stage.target - start_users)
    if delta == 0:
        return 1.0
    return max(1.0, math.ceil(delta / stage.duration))


def stage_tick(stages: Sequence[Stage], elapsed: float) -> Optional[Tuple[int, float]]:
    """Locust shape answer: (user count, spawn rate), or None to stop the run"""
    users = target_users_at(stages, elapsed)
    if users is None:
        return None
    return users, spawn_rate_for(stages, elapsed)


class StagedLoadShape(LoadTestShape):
    """
    Ramp-up, hold and ramp-down driven by the configured stages.

    Stages:
        0-10s  : 0->5   ramp-up
        10-40s : 5->20  load
        40-50s : 20->0  ramp-down
    """

    stages = DEFAULT_CONFIG.stages

    def tick(self):
        run_time = self.get_run_time()
        result = stage_tick(self.stages, run_time)
        if result is None:
            logger.info(f"Schedule finished after {run_time:.1f}s")
        return result
