import logging

import pytest


@pytest.fixture(autouse=True)
def relay_debug_logs(caplog):
    """Capture craftbot's debug logging so a failing test shows the relay's trace."""
    caplog.set_level(logging.DEBUG, logger="craftbot")
    yield
