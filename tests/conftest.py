"""
pytest configuration for waypoint-link tests.

This file is automatically loaded by pytest before test collection begins.
It sets up the Python path to allow imports from src/ and tests/, and
provides the simulated radio environment used by most tests.
"""

import sys
import os

# Calculate paths relative to this file's location
tests_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(tests_dir)
src_dir = os.path.join(project_root, 'src')

# Add src/ to path so tests run without an editable install
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)
if tests_dir not in sys.path:
    sys.path.insert(0, tests_dir)

import pytest
from unittest.mock import Mock, patch

from waypoint_link.config import LinkConfig
from waypoint_link.session import WaypointLink

from mock_radio_driver import EXAMPLE_ROUTE, RECEIVER_ID, MockRadioEnvironment


# ============================================================================
# Logging
# ============================================================================

@pytest.fixture(autouse=True)
def silence_rns_log():
    """Replace RNS.log so tests neither print nor depend on log configuration."""
    with patch("RNS.log") as mock_log:
        yield mock_log


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def fast_config():
    """LinkConfig with every settle and retry delay removed."""
    return LinkConfig({
        "name": "test",
        "scan_timeout": 0.05,
        "debug_scan_window": 0.05,
        "connect_timeout": 1.0,
        "retry_delay": 0,
        "chunk_delay": 0,
        "disconnect_settle": 0,
        "destroy_settle": 0,
        "create_settle": 0,
        "scan_settle": 0,
    })


# ============================================================================
# Simulated radio
# ============================================================================

@pytest.fixture
def radio_env():
    return MockRadioEnvironment()


@pytest.fixture
def receiver(radio_env):
    """The paired receiver, advertising under a matching name."""
    return radio_env.add_peripheral(RECEIVER_ID, "LoRaV32-Receiver")


@pytest.fixture
def on_result():
    return Mock()


@pytest.fixture
def engine(radio_env, fast_config, on_result):
    return WaypointLink(radio_env.factory, fast_config, on_result=on_result)


@pytest.fixture
def example_route():
    return list(EXAMPLE_ROUTE)
