"""
Test tick consistency modes, policy isolation, and the tick-boundary gate.

Verifies:
- sequential-live: later agents see earlier agents' post-update state
- snapshot-barrier: everyone sees tick-start state; order independent
- Raising or misbehaving policies cost one agent one tick, nothing more
- Population changes and setters are refused during a tick
"""

import sys
import numpy as np
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from aviary.agent import AgentState
from aviary.data_types import ConsistencyMode, MovementOutput, SimulationConfig
from aviary.flocking import FlockingParams, FlockingPolicy
from aviary.rng import make_generator
from aviary.simulation import FlockSimulation, SimulationState, SimulationStateError

import pytest


def _pair_sim(policy, mode, use_ckdtree):
    sim = FlockSimulation(
        policy=policy,
        config=SimulationConfig(
            consistency_mode=mode,
            perception_radius=100.0,
            max_entity_perception=5,
            use_ckdtree=use_ckdtree
        ),
        populate=False
    )
    sim.agents = [
        AgentState(position=[0.0, 50.0, 0.0], velocity=[0.0, 0.0, 0.0]),
        AgentState(position=[30.0, 50.0, 0.0], velocity=[0.0, 0.0, 0.0]),
    ]
    return sim


def _observing_policy(seen):
    def policy(movement_input):
        neighbor = movement_input.nearby_entities[0]
        seen.append((neighbor.distance, neighbor.velocity[0]))
        return MovementOutput(acceleration=np.array([10.0, 0.0, 0.0]))
    return policy


@pytest.mark.parametrize("use_ckdtree", [False, True])
def test_sequential_live_sees_updated_predecessors(use_ckdtree):
    """Agent 1 perceives agent 0 after agent 0 moved this tick"""
    seen = []
    sim = _pair_sim(_observing_policy(seen), ConsistencyMode.SEQUENTIAL_LIVE, use_ckdtree)

    sim.tick(1.0)

    # Agent 0 sees agent 1 before its update; agent 1 sees agent 0 at x=10, v=10
    assert seen[0] == (30.0, 0.0)
    assert np.isclose(seen[1][0], 20.0)
    assert seen[1][1] == 10.0
    print(f"[OK] sequential-live (cKDTree={use_ckdtree}): {seen}")


@pytest.mark.parametrize("use_ckdtree", [False, True])
def test_snapshot_barrier_sees_tick_start(use_ckdtree):
    seen = []
    sim = _pair_sim(_observing_policy(seen), ConsistencyMode.SNAPSHOT_BARRIER, use_ckdtree)

    sim.tick(1.0)

    assert seen == [(30.0, 0.0), (30.0, 0.0)]
    # Integration still happened for both
    assert np.allclose(sim.agents[0].position, [10.0, 50.0, 0.0])
    assert np.allclose(sim.agents[1].position, [40.0, 50.0, 0.0])
    print(f"[OK] snapshot-barrier (cKDTree={use_ckdtree}): {seen}")


def test_snapshot_barrier_is_order_independent():
    print("=" * 60)
    print("Test: snapshot-barrier order independence")
    print("=" * 60)

    rng = np.random.default_rng(21)
    positions = rng.uniform([-60.0, 30.0, -60.0], [60.0, 70.0, 60.0], size=(80, 3))
    velocities = rng.uniform(-5.0, 5.0, size=(80, 3))

    def build(order):
        policy = FlockingPolicy(params=FlockingParams(variable_update_chance=0.0), rng=make_generator(1))
        sim = FlockSimulation(
            policy=policy,
            config=SimulationConfig(consistency_mode="snapshot-barrier", max_entity_perception=10),
            populate=False
        )
        sim.agents = [AgentState(position=positions[i].copy(), velocity=velocities[i].copy()) for i in order]
        return sim

    forward = build(range(80))
    backward = build(range(79, -1, -1))

    for _ in range(5):
        forward.tick(0.1)
        backward.tick(0.1)

    for i in range(80):
        assert np.allclose(forward.agents[i].position, backward.agents[79 - i].position, atol=1e-9)
        assert np.allclose(forward.agents[i].velocity, backward.agents[79 - i].velocity, atol=1e-9)

    print("[OK] Reversed index order -> same flock\n")


def test_raising_policy_is_isolated():
    calls = []

    def flaky_policy(movement_input):
        calls.append(1)
        if len(calls) % 3 == 2:
            raise RuntimeError("boom")
        return MovementOutput(acceleration=np.array([0.0, 10.0, 0.0]))

    sim = FlockSimulation(policy=flaky_policy, config=SimulationConfig(), populate=False)
    sim.agents = [
        AgentState(position=[i * 50.0, 50.0, 0.0], velocity=[1.0, 0.0, 0.0], variables={'v': 1.0})
        for i in range(3)
    ]

    sim.tick(0.1)

    # Agent 1 coasted with zero acceleration; its neighbors were unaffected
    assert np.allclose(sim.agents[1].velocity, [1.0, 0.0, 0.0])
    assert np.allclose(sim.agents[1].position, [50.1, 50.0, 0.0])
    assert sim.agents[1].variables == {'v': 1.0}
    for i in (0, 2):
        assert np.allclose(sim.agents[i].velocity, [1.0, 1.0, 0.0])

    stats = sim.get_tick_stats()
    assert stats['policy_failures_last_tick'] == 1
    assert stats['policy_failures_total'] == 1

    sim.tick(0.1)
    assert sim.get_tick_stats()['policy_failures_total'] == 2
    assert sim.state is SimulationState.IDLE
    print("[OK] One failing agent, tick completed")


def test_malformed_outputs_are_sanitized():
    outputs = iter([
        MovementOutput(acceleration=np.array([np.nan, 0.0, 0.0]), variable_patch={'x': float('inf'), 'y': 1}),
        MovementOutput(acceleration=[1.0, 2.0]),
        None,
        MovementOutput(acceleration=(0.0, 0.0, 10.0), variable_patch={'z': 'high'}),
    ])

    def bad_policy(movement_input):
        return next(outputs)

    sim = FlockSimulation(policy=bad_policy, config=SimulationConfig(), populate=False)
    sim.agents = [
        AgentState(position=[i * 50.0, 50.0, 0.0], velocity=[2.0, 0.0, 0.0]) for i in range(4)
    ]

    sim.tick(0.1)

    for agent in sim.agents[:3]:
        assert np.allclose(agent.velocity, [2.0, 0.0, 0.0])
        assert np.all(np.isfinite(agent.position))
    assert np.allclose(sim.agents[3].velocity, [2.0, 0.0, 1.0])

    assert sim.agents[0].variables == {'y': 1.0}
    assert sim.agents[3].variables == {}
    print("[OK] Non-finite and malformed outputs -> zero acceleration")


def test_malformed_patch_does_not_abort_tick():
    """A non-mapping or overflowing patch is dropped; the rest of the tick runs"""
    outputs = iter([
        MovementOutput(acceleration=np.array([0.0, 10.0, 0.0])),
        MovementOutput(acceleration=np.array([0.0, 10.0, 0.0]), variable_patch=[('a', 1.0)]),
        MovementOutput(acceleration=np.array([0.0, 10.0, 0.0]), variable_patch="a=1"),
        MovementOutput(acceleration=np.array([0.0, 10.0, 0.0]), variable_patch={'big': 10 ** 400, 'ok': 2}),
    ])

    def patch_policy(movement_input):
        return next(outputs)

    batches = []
    sim = FlockSimulation(policy=patch_policy, config=SimulationConfig(), populate=False)
    sim.add_transform_listener(batches.append)
    sim.agents = [
        AgentState(position=[i * 50.0, 50.0, 0.0], velocity=[1.0, 0.0, 0.0], variables={'a': 0.5})
        for i in range(4)
    ]

    sim.tick(0.1)

    assert sim.tick_count == 1
    assert len(batches) == 1
    for agent in sim.agents:
        assert np.allclose(agent.velocity, [1.0, 1.0, 0.0])
    assert sim.agents[1].variables == {'a': 0.5}
    assert sim.agents[2].variables == {'a': 0.5}
    assert sim.agents[3].variables == {'a': 0.5, 'ok': 2.0}
    print("[OK] Malformed patches dropped, every agent integrated")


def test_gate_refuses_commands_during_tick():
    refused = []
    observed_state = []

    def meddling_policy(movement_input):
        observed_state.append(sim.state)
        for command in (
            sim.randomize_population,
            lambda: sim.create_population(3),
            lambda: sim.set_perception_radius(5.0),
            lambda: sim.set_max_entity_perception(1),
            lambda: sim.tick(0.1),
        ):
            try:
                command()
            except SimulationStateError:
                refused.append(1)
        return MovementOutput(acceleration=np.zeros(3))

    sim = FlockSimulation(policy=meddling_policy, config=SimulationConfig(entity_count=4))
    radius = sim.config.perception_radius

    sim.tick(0.1)

    assert observed_state == [SimulationState.TICK_IN_PROGRESS] * 4
    assert len(refused) == 5 * 4
    assert len(sim.agents) == 4
    assert sim.config.perception_radius == radius
    assert sim.tick_count == 1
    assert sim.state is SimulationState.IDLE

    # Between ticks the same commands go through
    sim.policy = lambda movement_input: MovementOutput(acceleration=np.zeros(3))
    sim.set_perception_radius(5.0)
    sim.create_population(3)
    assert len(sim.agents) == 3
    print("[OK] Gate refuses overlap, admits between ticks")


def test_gate_released_after_failed_tick():
    def raising_listener(batch):
        raise ValueError("renderer gone")

    sim = FlockSimulation(config=SimulationConfig(entity_count=5))
    sim.add_transform_listener(raising_listener)

    with pytest.raises(ValueError):
        sim.tick(0.1)

    sim.remove_transform_listener(raising_listener)
    sim.tick(0.1)
    assert sim.tick_count == 2


def test_setters_validate_and_apply_next_tick():
    counts = []

    def counting_policy(movement_input):
        counts.append(len(movement_input.nearby_entities))
        return MovementOutput(acceleration=np.zeros(3))

    sim = FlockSimulation(policy=counting_policy, config=SimulationConfig(entity_count=40, perception_radius=2000.0))

    with pytest.raises(ValueError):
        sim.set_perception_radius(-1.0)
    with pytest.raises(ValueError):
        sim.set_perception_radius(float('nan'))
    with pytest.raises(ValueError):
        sim.set_max_entity_perception(-3)

    sim.set_max_entity_perception(1)
    sim.tick(0.1)
    assert counts == [1] * 40

    counts.clear()
    sim.set_max_entity_perception(0)
    sim.tick(0.1)
    assert counts == [0] * 40

    counts.clear()
    sim.set_max_entity_perception(30)
    sim.set_perception_radius(0.0)
    sim.tick(0.1)
    assert counts == [0] * 40
    print("[OK] Setters validated, applied at the next tick")


def test_population_commands():
    sim = FlockSimulation(config=SimulationConfig(entity_count=10, terrain_size=1000.0))

    sim.create_population(25)
    assert len(sim.agents) == 25
    assert sim.config.entity_count == 25
    assert sim.get_transforms().positions.shape == (25, 3)

    for agent in sim.agents:
        agent.variables['tag'] = 1.0
    before = [agent.position.copy() for agent in sim.agents]

    sim.randomize_population()

    assert len(sim.agents) == 25
    assert all(agent.variables == {'tag': 1.0} for agent in sim.agents)
    assert any(not np.array_equal(agent.position, old) for agent, old in zip(sim.agents, before))
    for agent in sim.agents:
        assert abs(agent.position[0]) <= 400.0 and abs(agent.position[2]) <= 400.0
        assert 20.0 <= agent.position[1] <= 100.0

    sim.create_population(0)
    sim.tick(0.1)
    assert sim.get_transforms().positions.shape == (0, 3)

    with pytest.raises(ValueError):
        sim.create_population(-1)
    print("[OK] create/randomize population")


def test_agents_appended_between_ticks():
    sim = FlockSimulation(config=SimulationConfig(entity_count=3))
    sim.tick(0.1)

    sim.agents.append(AgentState(position=[0.0, 60.0, 0.0], velocity=[0.0, 0.0, 4.0]))
    sim.tick(0.1)

    transforms = sim.get_transforms()
    assert transforms.positions.shape == (4, 3)
    assert np.allclose(transforms.positions[3], [0.0, 60.0, 0.4])


if __name__ == '__main__':
    pytest.main([__file__, "-v"])
