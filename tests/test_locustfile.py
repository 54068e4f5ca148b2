import itertools
import json
import logging

import gevent
import pytest
from locust.env import Environment

import locustfile
import schedule
from config import DEFAULT_CONFIG
from conftest import FakeClient, FakeResponse
from driver import CHECK_STATUS_OK
from locustfile import MiddlewareUser, checks


@pytest.fixture(autouse=True)
def reset_checks():
    checks.reset()
    yield
    checks.reset()


@pytest.fixture
def environment():
    return Environment(user_classes=[MiddlewareUser])


def make_user(environment, response=None):
    user = MiddlewareUser(environment)
    user.client = FakeClient(response)
    user.on_start()
    return user


def sent_bodies(user):
    return [json.loads(kwargs["data"]) for _, kwargs in user.client.calls]


def test_users_get_distinct_ids(environment):
    first = make_user(environment)
    second = make_user(environment)
    assert second.vu_id > first.vu_id >= 1
    assert first.iteration == 0


def test_iterations_produce_unique_order_ids(environment):
    users = [make_user(environment) for _ in range(3)]
    for _ in range(4):
        for user in users:
            user.submit_transaction()

    order_ids = [body["internalOrderId"] for user in users for body in sent_bodies(user)]
    assert len(order_ids) == 12
    assert len(set(order_ids)) == 12
    assert all(user.iteration == 4 for user in users)


def test_order_id_carries_vu_and_iteration(environment):
    user = make_user(environment)
    user.submit_transaction()
    user.submit_transaction()

    last = sent_bodies(user)[-1]["internalOrderId"]
    assert last.startswith("TEST-")
    assert last.endswith(f"-{user.vu_id}-1")


def test_checks_are_recorded(environment):
    make_user(environment).submit_transaction()
    make_user(environment, FakeResponse(500, "error")).submit_transaction()

    assert checks.passes(CHECK_STATUS_OK) == 1
    assert checks.fails(CHECK_STATUS_OK) == 1


def test_think_time_is_at_least_one_second(environment):
    user = make_user(environment)
    assert user.wait_time() >= 1


def test_user_targets_configured_host():
    assert MiddlewareUser.host == "http://localhost:8080"


def test_load_shape_is_exposed():
    assert locustfile.StagedLoadShape is schedule.StagedLoadShape


def test_test_start_resets_checks():
    checks.record(CHECK_STATUS_OK, False)
    locustfile.on_test_start(environment=None)
    assert checks.summary() == []


def test_test_stop_logs_summary(caplog):
    checks.record(CHECK_STATUS_OK, True)
    checks.record(CHECK_STATUS_OK, False)

    with caplog.at_level(logging.INFO, logger="locustfile"):
        locustfile.on_test_stop(environment=None)

    assert "status was 200: 50.00% (1/2)" in caplog.text


class SlowClient(FakeClient):
    """Answers 200 after a delay, so a stop can arrive while the request is in flight"""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def post(self, path, **kwargs):
        gevent.sleep(self.delay)
        return super().post(path, **kwargs)


class SlowMiddlewareUser(MiddlewareUser):
    def on_start(self):
        super().on_start()
        self.client = SlowClient(0.5)


def test_init_sets_stop_timeout_when_cli_left_it_unset():
    environment = Environment(user_classes=[MiddlewareUser])
    environment.stop_timeout = 0

    locustfile.on_locust_init(environment=environment)

    assert environment.stop_timeout == DEFAULT_CONFIG.stop_timeout


def test_init_keeps_stop_timeout_from_cli():
    environment = Environment(user_classes=[MiddlewareUser], stop_timeout=3)

    locustfile.on_locust_init(environment=environment)

    assert environment.stop_timeout == 3


def test_stopping_lets_in_flight_iteration_finish():
    environment = Environment(user_classes=[SlowMiddlewareUser])
    locustfile.on_locust_init(environment=environment)
    runner = environment.create_local_runner()

    runner.start(1, spawn_rate=10)
    gevent.sleep(0.2)
    runner.stop()

    assert checks.passes(CHECK_STATUS_OK) == 1
    assert checks.fails(CHECK_STATUS_OK) == 0


class WorkerRunnerStub:
    def __init__(self, worker_index):
        self.worker_index = worker_index


def test_order_ids_stay_unique_across_workers(monkeypatch, fixed_time):
    monkeypatch.setattr(locustfile, "utc_now", lambda: fixed_time)
    users = []
    for worker_index in (0, 1):
        # each worker process starts its own VU counter
        monkeypatch.setattr(MiddlewareUser, "_vu_ids", itertools.count(1))
        environment = Environment(user_classes=[MiddlewareUser])
        environment.runner = WorkerRunnerStub(worker_index)
        users.append(make_user(environment))

    for user in users:
        user.submit_transaction()

    order_ids = [sent_bodies(user)[0]["internalOrderId"] for user in users]
    assert users[0].vu_id == 1
    assert users[1].vu_id == locustfile.VU_IDS_PER_WORKER + 1
    assert order_ids[0] != order_ids[1]
