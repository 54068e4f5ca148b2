import logging
import random
from collections import defaultdict
from typing import Dict, List

from config import RunConfig
from payload import IterationContext, build_payload

logger = logging.getLogger(__name__)

CHECK_STATUS_OK = "status was 200"
REQUEST_NAME = "POST transaction"


class CheckRecorder:
    """Pass/fail tallies for named checks, reported at the end of a run"""

    def __init__(self):
        self._results: Dict[str, List[int]] = defaultdict(lambda: [0, 0])

    def record(self, name: str, passed: bool) -> None:
        self._results[name][0 if passed else 1] += 1

    def passes(self, name: str) -> int:
        return self._results[name][0] if name in self._results else 0

    def fails(self, name: str) -> int:
        return self._results[name][1] if name in self._results else 0

    def pass_rate(self, name: str) -> float:
        total = self.passes(name) + self.fails(name)
        return self.passes(name) / total if total else 0.0

    def summary(self) -> List[str]:
        lines = []
        for name in sorted(self._results):
            passed, failed = self._results[name]
            total = passed + failed
            lines.append(f"{name}: {self.pass_rate(name) * 100:.2f}% ({passed}/{total})")
        return lines

    def reset(self) -> None:
        self._results.clear()


def evaluate_response(response, expected_status: int, recorder: CheckRecorder) -> bool:
    """Check the status code; log status and body when it is not the expected one"""
    passed = response.status_code == expected_status

    if not passed:
        error = getattr(response, "error", None)
        detail = f" ({error})" if error else ""
        logger.warning(
            f"Transaction failed: status {response.status_code}{detail}, response: {response.text}"
        )

    recorder.record(CHECK_STATUS_OK, passed)
    return passed


def run_iteration(
    client,
    config: RunConfig,
    ctx: IterationContext,
    rng: random.Random,
    recorder: CheckRecorder,
) -> bool:
    """
    Submit one synthetic transaction and record whether the middleware accepted it.

    `client` is a Locust HttpSession (or anything with the same post/catch_response
    contract). Failed requests, including connection errors reported by Locust as
    status 0, are logged and marked as failures but never raised.
    """
    payload = build_payload(ctx, rng, config)

    with client.post(
        config.path,
        data=payload.model_dump_json(),
        headers=config.headers,
        name=REQUEST_NAME,
        catch_response=True,
    ) as response:
        passed = evaluate_response(response, config.expected_status, recorder)
        if passed:
            response.success()
        else:
            response.failure(f"Unexpected status: {response.status_code}")

    return passed
