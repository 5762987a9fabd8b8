import logging
from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture()
def now() -> datetime:
    return datetime(2024, 3, 15, 12, 30, tzinfo=timezone.utc)


@pytest.fixture()
def clock(now) -> FakeClock:
    return FakeClock(now)


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger("stocker")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def collect(stream):
    values = []
    stream.subscribe(values.append)
    return values


@pytest.fixture()
def collected():
    return collect
