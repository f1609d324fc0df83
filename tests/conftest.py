"""
Pytest configuration and shared fixtures.

Registers the integration marker for tests that call real Azure resources
(Document Intelligence, Service Bus) and the --run-integration option.
"""

import pytest
from src.services.events import EventPublisher
from src.services.storage import InMemoryLedger


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real Azure Document Intelligence and Service Bus"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: test calls real Azure resources configured in .env"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture
def ledger():
    """Empty in-memory ledger"""
    return InMemoryLedger()


@pytest.fixture
def events():
    """Events received by the publisher fixture, in publish order"""
    return []


@pytest.fixture
def publisher(events):
    p = EventPublisher()
    p.subscribe(events.append)
    return p
