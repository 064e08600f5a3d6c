"""Tests for the swarm registry."""

import threading

import pytest

from hivestore.config import StoreConfig
from hivestore.storage.sqlite import open_coordinator


class TestSwarmRegistry:
    """Creation, lookup and listing."""

    def test_create_and_get(self, coordinator):
        swarm = coordinator.create_swarm("alpha", topology="hierarchical", max_agents=5, config={"x": 1})
        fetched = coordinator.get_swarm(swarm.id)
        assert fetched.name == "alpha"
        assert fetched.topology == "hierarchical"
        assert fetched.max_agents == 5
        assert fetched.config == {"x": 1}
        assert fetched.is_active is False

    def test_get_missing_returns_none(self, coordinator):
        assert coordinator.get_swarm("nope") is None

    def test_list_newest_first_with_agent_count(self, coordinator, clock):
        first = coordinator.create_swarm("first")
        clock.advance(seconds=1)
        second = coordinator.create_swarm("second")
        coordinator.create_agent(first.id, "a1", "coder")
        coordinator.create_agent(first.id, "a2", "tester")

        swarms = coordinator.get_all_swarms()
        assert [s.id for s in swarms] == [second.id, first.id]
        assert swarms[1].agent_count == 2
        assert swarms[0].agent_count == 0

    def test_archive_keeps_row(self, coordinator, swarm):
        assert coordinator.archive_swarm(swarm.id)
        archived = coordinator.get_swarm(swarm.id)
        assert archived is not None
        assert archived.status == "archived"


class TestActiveSwarm:
    """The exclusive active flag."""

    def test_no_active_swarm_initially(self, coordinator):
        coordinator.create_swarm("idle")
        assert coordinator.get_active_swarm_id() is None

    def test_set_active_switches(self, coordinator):
        a = coordinator.create_swarm("a")
        b = coordinator.create_swarm("b")
        assert coordinator.set_active_swarm(a.id)
        assert coordinator.get_active_swarm_id() == a.id
        assert coordinator.set_active_swarm(b.id)
        assert coordinator.get_active_swarm_id() == b.id
        assert coordinator.get_swarm(a.id).is_active is False

    def test_unknown_target_keeps_current(self, coordinator, swarm):
        assert coordinator.set_active_swarm("missing") is False
        assert coordinator.get_active_swarm_id() == swarm.id

    def test_hostile_id_is_bound_not_interpolated(self, coordinator, swarm):
        assert coordinator.set_active_swarm("x' OR '1'='1") is False
        assert coordinator.get_active_swarm_id() == swarm.id

    def test_concurrent_set_active_leaves_one(self, db_file, clock):
        """Interleaved toggles from several connections never leave two active swarms."""
        config = StoreConfig(db_path=str(db_file))
        setup = open_coordinator(config=config, clock=clock)
        ids = [setup.create_swarm(f"s{i}").id for i in range(4)]

        workers = [open_coordinator(config=config, clock=clock) for _ in ids]
        errors = []

        def toggle(coord, swarm_id):
            try:
                for _ in range(25):
                    coord.set_active_swarm(swarm_id)
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [threading.Thread(target=toggle, args=(w, i)) for w, i in zip(workers, ids)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        active = setup.persistence.connection.execute(
            "SELECT COUNT(*) FROM swarms WHERE is_active = 1"
        ).fetchone()[0]
        assert active == 1
        assert setup.get_active_swarm_id() in ids

        for coord in workers + [setup]:
            coord.close()


class TestSwarmStats:
    """Derived swarm figures."""

    def test_stats_counts(self, coordinator, swarm, agent):
        busy = coordinator.create_agent(swarm.id, "busy-one", "tester", status="busy")
        done = coordinator.create_task(swarm.id, "done")
        coordinator.create_task(swarm.id, "waiting")
        coordinator.update_task_status(done.id, "completed")
        coordinator.create_communication(swarm.id, busy.id, "hello", to_agent_id=agent.id)

        stats = coordinator.get_swarm_stats(swarm.id)
        assert stats.total_agents == 2
        assert stats.busy_agents == 1
        assert stats.total_tasks == 2
        assert stats.completed_tasks == 1
        assert stats.task_backlog == 1
        assert stats.communication_volume == 1
        assert stats.agent_utilization == pytest.approx(0.5)

    def test_communication_volume_window(self, coordinator, swarm, agent, clock):
        coordinator.create_communication(swarm.id, agent.id, "old news")
        clock.advance(hours=2)
        assert coordinator.get_swarm_stats(swarm.id).communication_volume == 0

    def test_strategy_performance(self, coordinator, swarm):
        ok = coordinator.create_task(swarm.id, "ok")
        bad = coordinator.create_task(swarm.id, "bad")
        coordinator.update_task_status(ok.id, "completed")
        coordinator.update_task_status(bad.id, "failed")

        performance = coordinator.get_strategy_performance(swarm.id)
        assert set(performance) == {"mesh"}
        assert performance["mesh"].total_tasks == 2
        assert performance["mesh"].success_rate == pytest.approx(50.0)
