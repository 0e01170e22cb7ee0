"""Pytest configuration and fixtures for i3x3 daemon tests."""

import pytest

from fixtures.fake_i3 import FakeI3Connection
from i3x3_daemon.queries import I3Queries


@pytest.fixture
def scenario_i3() -> FakeI3Connection:
    """Two active outputs, A primary; ws1 on B, ws2 and ws3 on A, ws2 focused."""
    return FakeI3Connection(
        outputs=[("A", True, True), ("B", True, False)],
        workspaces={1: "B", 2: "A", 3: "A"},
        focused=2,
    )


@pytest.fixture
def scenario_queries(scenario_i3: FakeI3Connection) -> I3Queries:
    return I3Queries(scenario_i3, timeout=1.0)
