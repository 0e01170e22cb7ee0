"""Tests for the workspace distributor: redistribution passes and loop lifecycle."""

import asyncio

import pytest

from fixtures.fake_i3 import FakeI3Connection, expected_layout, wait_until
from i3x3_daemon.distributor import TriggerChannel, WorkspaceDistributor
from i3x3_daemon.errors import (
    CommandError,
    FatalDistributionError,
    NoActiveOutputsError,
    QueryError,
)
from i3x3_daemon.queries import I3Queries


def make_distributor(fake: FakeI3Connection, **kwargs) -> WorkspaceDistributor:
    kwargs.setdefault("interval", 60.0)
    return WorkspaceDistributor(I3Queries(fake, timeout=1.0), **kwargs)


class TestRedistribute:
    """Single redistribution passes."""

    async def test_scenario_moves_and_restores_focus(self, scenario_i3):
        distributor = make_distributor(scenario_i3)

        result = await distributor.redistribute()

        assert scenario_i3.workspaces == {1: "A", 2: "B", 3: "A"}
        assert [(m.workspace_num, m.expected_output) for m in result.moves] == [(1, "A"), (2, "B")]
        assert result.active_outputs == ["A", "B"]
        # Workspace 2 itself was relocated, focus still returns to it
        assert scenario_i3.focused == 2
        assert scenario_i3.commands[-1] == "workspace number 2"

    async def test_already_distributed_issues_no_moves(self):
        fake = FakeI3Connection(
            outputs=[("A", True, True), ("B", True, False)],
            workspaces=expected_layout(["A", "B"], range(1, 7)),
            focused=5,
        )

        result = await make_distributor(fake).redistribute()

        assert result.moves == []
        assert fake.output_moves == []
        assert fake.commands == ["workspace number 5"]
        assert fake.focused == 5

    async def test_second_pass_is_noop(self, scenario_i3):
        distributor = make_distributor(scenario_i3)
        await distributor.redistribute()
        scenario_i3.commands.clear()

        result = await distributor.redistribute()

        assert result.move_count == 0
        assert scenario_i3.output_moves == []
        assert scenario_i3.focused == 2

    async def test_primary_output_gets_index_one(self):
        # Primary listed last in the query result
        fake = FakeI3Connection(
            outputs=[("HDMI-1", True, False), ("DP-1", True, False), ("eDP-1", True, True)],
            workspaces={1: "HDMI-1", 2: "HDMI-1", 3: "HDMI-1", 4: "HDMI-1"},
            focused=1,
        )

        await make_distributor(fake).redistribute()

        assert fake.workspaces == {1: "eDP-1", 2: "HDMI-1", 3: "DP-1", 4: "eDP-1"}

    async def test_undocked_collapses_to_single_output(self):
        fake = FakeI3Connection(
            outputs=[("eDP-1", True, True), ("HDMI-1", False, False)],
            workspaces={1: "eDP-1", 2: "HDMI-1", 3: "eDP-1", 4: "HDMI-1"},
            focused=3,
        )

        await make_distributor(fake).redistribute()

        assert set(fake.workspaces.values()) == {"eDP-1"}
        assert fake.focused == 3

    async def test_no_focused_workspace_restores_to_one(self):
        fake = FakeI3Connection(
            outputs=[("A", True, True)],
            workspaces={1: "A", 2: "A"},
            focused=0,
        )

        result = await make_distributor(fake).redistribute()

        assert result.focused_workspace == 1
        assert fake.commands == ["workspace number 1"]

    async def test_focused_named_workspace_is_restored_by_name(self):
        fake = FakeI3Connection(
            outputs=[("A", True, True), ("B", True, False)],
            workspaces={1: "B", 2: "B", "mail": "A"},
            focused="mail",
        )

        result = await make_distributor(fake).redistribute()

        assert fake.workspaces == {1: "A", 2: "B", "mail": "A"}
        assert result.focused_name == "mail"
        assert fake.commands[-1] == 'workspace "mail"'
        assert fake.focused == "mail"
        assert not any(c == "workspace number -1" for c in fake.commands)

    async def test_named_workspace_with_quotes_is_restored(self):
        fake = FakeI3Connection(
            outputs=[("A", True, True)],
            workspaces={1: "A", 'say "hi"': "A"},
            focused='say "hi"',
        )

        await make_distributor(fake).redistribute()

        assert fake.commands == ['workspace "say \\"hi\\""']
        assert fake.focused == 'say "hi"'

    async def test_no_active_outputs(self):
        fake = FakeI3Connection(
            outputs=[("A", False, True)],
            workspaces={1: "A"},
            focused=1,
        )

        with pytest.raises(NoActiveOutputsError):
            await make_distributor(fake).redistribute()
        assert fake.commands == []

    async def test_query_failure_propagates(self, scenario_i3):
        scenario_i3.fail_queries = True

        with pytest.raises(QueryError):
            await make_distributor(scenario_i3).redistribute()
        assert scenario_i3.commands == []

    async def test_move_failure_aborts_and_restores_focus(self, scenario_i3):
        scenario_i3.fail_command = lambda cmd: cmd.startswith("move workspace")

        with pytest.raises(CommandError):
            await make_distributor(scenario_i3).redistribute()

        # Only the first move was attempted
        assert len(scenario_i3.output_moves) == 1
        assert scenario_i3.commands[-1] == "workspace number 2"
        assert scenario_i3.focused == 2

    async def test_move_failure_wins_over_restore_failure(self, scenario_i3):
        scenario_i3.fail_command = lambda cmd: cmd.startswith("move workspace") or cmd == "workspace number 2"

        with pytest.raises(CommandError, match="move workspace"):
            await make_distributor(scenario_i3).redistribute()

    async def test_restore_failure_fails_pass(self):
        fake = FakeI3Connection(outputs=[("A", True, True)], workspaces={1: "A"}, focused=1)
        fake.fail_command = lambda cmd: cmd == "workspace number 1"

        with pytest.raises(CommandError):
            await make_distributor(fake).redistribute()

    async def test_concurrent_passes_are_serialized(self, scenario_i3):
        distributor = make_distributor(scenario_i3)

        first, second = await asyncio.gather(distributor.redistribute(), distributor.redistribute())

        assert first.move_count == 2
        assert second.move_count == 0
        assert distributor.pass_count == 2


class TestTriggerChannel:

    async def test_pulses_queue_up_to_capacity(self):
        triggers = TriggerChannel(maxsize=2)

        assert triggers.pulse()
        assert triggers.pulse()
        assert not triggers.pulse()
        assert triggers.pending == 2
        assert triggers.coalesced == 1

    async def test_get_consumes_pulse(self):
        triggers = TriggerChannel()
        triggers.pulse()

        await asyncio.wait_for(triggers.get(), timeout=1.0)

        assert triggers.pending == 0


class TestDistributorLoop:
    """Lifecycle, wake sources and failure threshold."""

    async def test_trigger_pulse_runs_one_pass_each(self, scenario_i3):
        distributor = make_distributor(scenario_i3)
        task = asyncio.create_task(distributor.start())

        distributor.triggers.pulse()
        await wait_until(lambda: distributor.pass_count == 1)
        distributor.triggers.pulse()
        distributor.triggers.pulse()
        await wait_until(lambda: distributor.pass_count == 3)

        distributor.stop()
        assert await asyncio.wait_for(task, timeout=1.0) is None
        assert scenario_i3.workspaces == {1: "A", 2: "B", 3: "A"}

    async def test_timer_runs_passes_without_triggers(self, scenario_i3):
        distributor = make_distributor(scenario_i3, interval=0.02)
        task = asyncio.create_task(distributor.start())

        await wait_until(lambda: distributor.pass_count >= 2)

        distributor.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert scenario_i3.focused == 2

    async def test_threshold_reached_after_exact_failures(self, scenario_i3):
        scenario_i3.fail_queries = True
        distributor = make_distributor(scenario_i3, interval=0.01, threshold=3)

        with pytest.raises(FatalDistributionError) as exc_info:
            await asyncio.wait_for(distributor.start(), timeout=2.0)

        assert scenario_i3.query_calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.threshold == 3
        assert isinstance(exc_info.value.__cause__, QueryError)
        assert not distributor.is_running

    async def test_default_threshold_is_five(self, scenario_i3):
        scenario_i3.fail_queries = True
        distributor = make_distributor(scenario_i3, interval=0.01)

        with pytest.raises(FatalDistributionError):
            await asyncio.wait_for(distributor.start(), timeout=2.0)

        assert scenario_i3.query_calls == 5

    async def test_success_resets_failure_counter(self, scenario_i3):
        scenario_i3.query_plan = [True, True, False, True, True]
        distributor = make_distributor(scenario_i3, threshold=3)
        task = asyncio.create_task(distributor.start())

        for _ in range(5):
            distributor.triggers.pulse()
        await wait_until(lambda: scenario_i3.query_calls == 5 and distributor.consecutive_failures == 2)

        assert distributor.is_running
        distributor.stop()
        await asyncio.wait_for(task, timeout=1.0)

    async def test_named_focus_does_not_count_as_failure(self):
        fake = FakeI3Connection(
            outputs=[("A", True, True), ("B", True, False)],
            workspaces={1: "B", "mail": "A"},
            focused="mail",
        )
        distributor = make_distributor(fake, interval=0.01, threshold=2)
        task = asyncio.create_task(distributor.start())

        await wait_until(lambda: distributor.pass_count >= 4)

        assert distributor.is_running
        assert distributor.consecutive_failures == 0
        distributor.stop()
        assert await asyncio.wait_for(task, timeout=1.0) is None
        assert fake.focused == "mail"

    async def test_no_active_outputs_counts_as_failure(self):
        fake = FakeI3Connection(outputs=[("A", False, True)], workspaces={1: "A"}, focused=1)
        distributor = make_distributor(fake, interval=0.01, threshold=2)

        with pytest.raises(FatalDistributionError) as exc_info:
            await asyncio.wait_for(distributor.start(), timeout=2.0)
        assert isinstance(exc_info.value.__cause__, NoActiveOutputsError)

    async def test_stop_without_start_is_noop(self, scenario_i3):
        distributor = make_distributor(scenario_i3)

        distributor.stop()
        distributor.stop()

        assert not distributor.is_running

    async def test_stop_is_idempotent(self, scenario_i3):
        distributor = make_distributor(scenario_i3)
        task = asyncio.create_task(distributor.start())
        await wait_until(lambda: distributor.is_running)

        distributor.stop()
        distributor.stop()

        assert await asyncio.wait_for(task, timeout=1.0) is None
        assert scenario_i3.commands == []

    async def test_stop_from_another_thread(self, scenario_i3):
        distributor = make_distributor(scenario_i3)
        task = asyncio.create_task(distributor.start())
        await wait_until(lambda: distributor.is_running)

        await asyncio.to_thread(distributor.stop)

        await asyncio.wait_for(task, timeout=1.0)
        assert not distributor.is_running

    async def test_restart_after_stop(self, scenario_i3):
        distributor = make_distributor(scenario_i3)

        task = asyncio.create_task(distributor.start())
        await wait_until(lambda: distributor.is_running)
        distributor.stop()
        await asyncio.wait_for(task, timeout=1.0)

        task = asyncio.create_task(distributor.start())
        distributor.triggers.pulse()
        await wait_until(lambda: distributor.pass_count == 1)
        distributor.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert scenario_i3.workspaces == {1: "A", 2: "B", 3: "A"}

    async def test_start_twice_raises(self, scenario_i3):
        distributor = make_distributor(scenario_i3)
        task = asyncio.create_task(distributor.start())
        await wait_until(lambda: distributor.is_running)

        with pytest.raises(RuntimeError, match="already running"):
            await distributor.start()

        distributor.stop()
        await asyncio.wait_for(task, timeout=1.0)

    async def test_invalid_parameters(self, scenario_queries):
        with pytest.raises(ValueError):
            WorkspaceDistributor(scenario_queries, interval=0)
        with pytest.raises(ValueError):
            WorkspaceDistributor(scenario_queries, threshold=0)
