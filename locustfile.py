"""
Load test for the transaction middleware.

Run with: locust -f locustfile.py --headless
The run follows StagedLoadShape (0->5 users over 10s, up to 20 over 30s, down to 0 over 10s).
"""
import itertools
import logging

from locust import HttpUser, constant, events, task

from config import DEFAULT_CONFIG
from driver import CheckRecorder, run_iteration
from payload import IterationContext, utc_now
from schedule import StagedLoadShape  # noqa: F401  picked up by locust as the load shape

logger = logging.getLogger(__name__)

checks = CheckRecorder()

# Every worker process counts VU ids from 1, so ids are offset by worker index
VU_IDS_PER_WORKER = 1_000_000


@events.init.add_listener
def on_locust_init(environment, **kwargs):
    # a stop timeout of 0 makes locust kill users mid-request when the user count drops
    if not environment.stop_timeout:
        environment.stop_timeout = DEFAULT_CONFIG.stop_timeout
        logger.info(f"Using stop timeout of {environment.stop_timeout:.0f}s for in-flight iterations")


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    checks.reset()
    logger.info(
        f"Starting load test against {DEFAULT_CONFIG.endpoint_url} "
        f"({len(DEFAULT_CONFIG.stages)} stages, {DEFAULT_CONFIG.total_duration:.0f}s)"
    )


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    for line in checks.summary():
        logger.info(f"Check {line}")


class MiddlewareUser(HttpUser):
    host = DEFAULT_CONFIG.base_url
    wait_time = constant(DEFAULT_CONFIG.think_time)  # think-time between iterations

    _vu_ids = itertools.count(1)

    def on_start(self):
        self.vu_id = self._next_vu_id()
        self.iteration = 0
        self.rng = DEFAULT_CONFIG.rng_for(self.vu_id)

    @task
    def submit_transaction(self):
        ctx = IterationContext(vu_id=self.vu_id, iteration=self.iteration, timestamp=utc_now())
        self.iteration += 1
        run_iteration(self.client, DEFAULT_CONFIG, ctx, self.rng, checks)

    def _next_vu_id(self):
        worker_index = getattr(self.environment.runner, "worker_index", 0) or 0
        return worker_index * VU_IDS_PER_WORKER + next(MiddlewareUser._vu_ids)
