"""Pytest configuration to ensure tests use local source code."""

import logging
import sys
from pathlib import Path

import pytest

# Add src directory to Python path to ensure tests use local source code
# instead of installed package
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


@pytest.fixture(autouse=True)
def reset_asyncrmrf_logger():
    """Drop handlers bound to streams captured by a previous test."""
    yield
    logger = logging.getLogger("asyncrmrf")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
