import asyncio
import gc
import logging

import pytest


def pytest_configure(config):
    """Disable the loggers."""
    # Debug logs clobber output on CI
    for name in ["kazoo", "asyncio"]:
        logger = logging.getLogger(name)
        logger.setLevel(logging.INFO)


@pytest.fixture(scope="class")
def loop(request):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    yield loop

    if not loop._closed:
        loop.call_soon(loop.stop)
        loop.run_forever()
        loop.close()
    gc.collect()
    asyncio.set_event_loop(None)


@pytest.fixture(autouse=True)
def collect_garbage():
    # This is used to have a better report on ResourceWarnings. Without it
    # all warnings will be filled in the end of last test-case.
    yield
    gc.collect()


@pytest.fixture(scope="class")
def setup_test_class_serverless(request, loop):
    request.cls.loop = loop

