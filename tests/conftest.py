import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_clusterseed_logger():
    """init_logging() rewires the shared logger; put it back after every test."""
    yield
    logger = logging.getLogger("clusterseed")
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
