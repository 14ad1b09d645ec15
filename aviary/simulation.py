"""
Flock simulation kernel.

Main simulation class that owns the agent population, runs the per-tick
perception -> policy -> integration -> variable merge pipeline, and
publishes transforms for rendering.
"""

import numpy as np
import math
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable, List, Optional

from .agent import AgentState
from .data_types import (
    ConsistencyMode,
    MovementInput,
    MovementOutput,
    SimulationConfig,
    TransformBatch,
)
from .integrator import integrate, orientation_from_velocity
from .perception import PerceptionIndex
from .policy import MovementPolicy, idle_policy, sanitize_output
from .rng import make_generator
from .spatial import identity_quaternion
from .spawning import spawn_agents, randomize_agents
from .terrain import FlatTerrain
from .constants import MAX_SPEED, MAX_DELTA_TIME, TICK_TIME_WINDOW


TransformListener = Callable[[TransformBatch], None]


class SimulationState(str, Enum):
    IDLE = "idle"
    TICK_IN_PROGRESS = "tick-in-progress"


class SimulationStateError(RuntimeError):
    """Raised when an operation overlaps an in-flight tick"""
    pass


def clamp_delta_time(dt: float, ceiling: float = MAX_DELTA_TIME) -> float:
    """
    Clamp a frame time before handing it to tick().

    Scheduler stalls produce huge frame times; integrating them in one
    step destabilizes the flock.

    Args:
        dt: Raw frame time in seconds
        ceiling: Largest step allowed

    Returns:
        min(dt, ceiling), or 0.0 for non-finite input
    """
    if not math.isfinite(dt):
        return 0.0
    return min(dt, ceiling)


class FlockSimulation:
    """
    Main simulation class for the flock.

    Owns the population, the perception index, and per-agent orientations.
    Ticks are driven by a single thread; population changes and setters are
    refused while a tick is in progress.

    TICK CONTRACT (Critical Invariant):
    Agents are visited in index order. Each agent is snapshotted, perceives
    its neighbors, samples terrain, is handed to the movement policy, is
    integrated, and has its variable patch merged before the next agent is
    visited.

    What an agent perceives depends on the consistency mode chosen at
    construction:
    - sequential-live (default): agents are updated in place, so agent i
      sees agents j < i in their post-update state for this tick and
      agents j > i in their pre-update state. Results depend on index order.
    - snapshot-barrier: every agent perceives the frozen tick-start state.
      Results do not depend on index order.
    """

    def __init__(
        self,
        policy: Optional[MovementPolicy] = None,
        config: Optional[SimulationConfig] = None,
        terrain=None,
        populate: bool = True
    ):
        """
        Initialize simulation.

        Args:
            policy: Movement policy callable (default: idle_policy)
            config: Simulation tunables (default: SimulationConfig())
            terrain: Terrain collaborator with sample_ahead() (default: FlatTerrain)
            populate: If True, spawn config.entity_count agents immediately
        """
        self.config: SimulationConfig = config if config is not None else SimulationConfig()
        self.policy: MovementPolicy = policy if policy is not None else idle_policy
        self.terrain = terrain if terrain is not None else FlatTerrain()
        self.consistency_mode: ConsistencyMode = self.config.consistency_mode

        # Simulation state
        self.agents: List[AgentState] = []
        self.state: SimulationState = SimulationState.IDLE
        self.tick_count: int = 0
        self._population_generation: int = 0
        self._gate = threading.Lock()

        # Live SoA mirrors of agent position/velocity (perception reads these)
        self._positions: np.ndarray = np.empty((0, 3), dtype=np.float64)
        self._velocities: np.ndarray = np.empty((0, 3), dtype=np.float64)

        # Render facing per agent, owned here rather than in AgentState
        self._orientations: np.ndarray = np.empty((0, 4), dtype=np.float64)

        self.perception = PerceptionIndex(use_ckdtree=self.config.use_ckdtree)

        # Transform sync
        self._transform_listeners: List[TransformListener] = []
        self._last_transforms: Optional[TransformBatch] = None

        # Performance metrics
        self._tick_times: List[float] = []
        self._tick_time_sum: float = 0.0
        self._tick_time_window: int = TICK_TIME_WINDOW

        # Phase timing breakdown
        self._build_times: List[float] = []
        self._perception_times: List[float] = []
        self._policy_times: List[float] = []
        self._integration_times: List[float] = []

        # Policy failure telemetry
        self._policy_failures_last_tick: int = 0
        self._policy_failures_total: int = 0

        if populate:
            self.create_population(self.config.entity_count)

        print(f"[OK] Simulation initialized: {len(self.agents)} agents, "
              f"mode={self.consistency_mode.value}, "
              f"backend={'cKDTree' if self.perception.uses_ckdtree else 'O(n)'}, "
              f"seed={self.config.seed}")

    # ========================================================================
    # Tick-boundary gate
    # ========================================================================

    @contextmanager
    def _exclusive(self, operation: str):
        if not self._gate.acquire(blocking=False):
            raise SimulationStateError(f"{operation} refused: tick in progress")
        try:
            yield
        finally:
            self._gate.release()

    # ========================================================================
    # Commands
    # ========================================================================

    def create_population(self, count: int):
        """
        Replace the population with `count` freshly spawned agents.

        Args:
            count: Number of agents (>= 0)
        """
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")

        with self._exclusive("create_population"):
            rng = self._next_population_rng()
            self.agents = spawn_agents(rng, count, self.config.terrain_size)
            self.config.entity_count = count

            self._sync_buffers()
            self._reset_orientations()

    def randomize_population(self):
        """
        Re-draw positions and velocities of the existing agents.

        Population size and variable stores are untouched.
        """
        with self._exclusive("randomize_population"):
            rng = self._next_population_rng()
            randomize_agents(rng, self.agents, self.config.terrain_size)
            self._sync_buffers()
            self._reset_orientations()

    def set_perception_radius(self, radius: float):
        """Set perception radius R (takes effect at the next tick)"""
        if not math.isfinite(radius) or radius < 0:
            raise ValueError(f"perception radius must be finite and >= 0, got {radius}")
        with self._exclusive("set_perception_radius"):
            self.config.perception_radius = float(radius)

    def set_max_entity_perception(self, cap: int):
        """Set neighbor cap K (takes effect at the next tick)"""
        if cap < 0:
            raise ValueError(f"max entity perception must be >= 0, got {cap}")
        with self._exclusive("set_max_entity_perception"):
            self.config.max_entity_perception = int(cap)

    def add_transform_listener(self, listener: TransformListener):
        """Register a callback receiving a TransformBatch after every tick"""
        self._transform_listeners.append(listener)

    def remove_transform_listener(self, listener: TransformListener):
        self._transform_listeners.remove(listener)

    def tick(self, delta_time: float):
        """
        Advance simulation by one time step.

        delta_time is used as given; clamp it upstream (see clamp_delta_time).
        A delta_time <= 0 leaves every position and velocity bit-identical,
        although the policy is still invoked for every agent.

        Args:
            delta_time: Time step in seconds
        """
        with self._exclusive("tick"):
            self.state = SimulationState.TICK_IN_PROGRESS
            try:
                self._run_tick(float(delta_time))
            finally:
                self.state = SimulationState.IDLE

        self._publish_transforms()

    def run(self, ticks: int, delta_time: float, summary_every: Optional[int] = None):
        """
        Headless loop: tick `ticks` times with a clamped step.

        Args:
            ticks: Number of ticks
            delta_time: Frame time per tick (clamped to config.max_delta_time)
            summary_every: Print a tick summary every N ticks (None = never)
        """
        step = clamp_delta_time(delta_time, self.config.max_delta_time)
        for _ in range(ticks):
            self.tick(step)
            if summary_every and self.tick_count % summary_every == 0:
                self.print_tick_summary()

    # ========================================================================
    # Tick internals
    # ========================================================================

    def _run_tick(self, dt: float):
        start_time = time.perf_counter()

        # Tunables are read once, at tick start
        radius = self.config.perception_radius
        cap = self.config.max_entity_perception

        # Agents may have been edited between ticks; refresh mirrors
        self._sync_buffers()

        # ============================================================
        # PERCEPTION INDEX BUILD
        # ============================================================
        build_start = time.perf_counter()
        if self.consistency_mode is ConsistencyMode.SNAPSHOT_BARRIER:
            # Everyone perceives the tick-start state
            self.perception.build(self._positions.copy(), self._velocities.copy())
        else:
            # Live reads; any agent moves at most MAX_SPEED * dt this tick
            drift = MAX_SPEED * dt if dt > 0.0 else 0.0
            self.perception.build(self._positions, self._velocities, drift=drift)
        self._build_times.append(time.perf_counter() - build_start)

        # ============================================================
        # PER-AGENT PIPELINE (index order)
        # ============================================================
        perception_elapsed = 0.0
        policy_elapsed = 0.0
        integration_elapsed = 0.0
        failures = 0

        for index, agent in enumerate(self.agents):
            snapshot = agent.copy()

            phase_start = time.perf_counter()
            nearby = self.perception.find_nearby(index, radius, cap)
            perception_elapsed += time.perf_counter() - phase_start

            terrain_ahead = self.terrain.sample_ahead(snapshot.position.copy(), snapshot.velocity.copy())

            movement_input = MovementInput(
                current_state=snapshot,
                nearby_entities=nearby,
                terrain_ahead=terrain_ahead,
                delta_time=dt
            )

            phase_start = time.perf_counter()
            output = self._invoke_policy(index, movement_input)
            policy_elapsed += time.perf_counter() - phase_start
            if output is None:
                failures += 1
                output = MovementOutput(acceleration=np.zeros(3, dtype=np.float64))

            phase_start = time.perf_counter()
            integrate(agent, output.acceleration, dt)
            self._positions[index] = agent.position
            self._velocities[index] = agent.velocity
            self._orientations[index] = orientation_from_velocity(agent.velocity, self._orientations[index])
            integration_elapsed += time.perf_counter() - phase_start

            agent.merge_variables(output.variable_patch)

        self._perception_times.append(perception_elapsed)
        self._policy_times.append(policy_elapsed)
        self._integration_times.append(integration_elapsed)

        self._policy_failures_last_tick = failures
        self._policy_failures_total += failures

        self.tick_count += 1

        self._record_tick_time(time.perf_counter() - start_time)

    def _invoke_policy(self, index: int, movement_input: MovementInput) -> Optional[MovementOutput]:
        """
        Run the policy for one agent in isolation.

        Returns:
            Sanitized output, or None if the policy raised
        """
        try:
            output = self.policy(movement_input)
        except Exception as e:
            print(f"[WARN] Movement policy failed for agent {index}: {type(e).__name__}: {e}")
            return None
        return sanitize_output(output, index)

    def _sync_buffers(self):
        n = len(self.agents)
        if len(self._positions) != n:
            # Population size changed: reallocate, keeping surviving orientations
            previous = self._orientations
            self._positions = np.zeros((n, 3), dtype=np.float64)
            self._velocities = np.zeros((n, 3), dtype=np.float64)
            self._orientations = np.tile(identity_quaternion(), (n, 1))
            keep = min(len(previous), n)
            self._orientations[:keep] = previous[:keep]

        for i, agent in enumerate(self.agents):
            self._positions[i] = agent.position
            self._velocities[i] = agent.velocity

    def _reset_orientations(self):
        identity = identity_quaternion()
        for i in range(len(self.agents)):
            self._orientations[i] = orientation_from_velocity(self._velocities[i], identity)

    def _next_population_rng(self) -> np.random.Generator:
        rng = make_generator(self.config.seed, "population", self._population_generation)
        self._population_generation += 1
        return rng

    def _publish_transforms(self):
        batch = TransformBatch(
            tick=self.tick_count,
            positions=self._positions.copy(),
            orientations=self._orientations.copy()
        )
        self._last_transforms = batch
        for listener in list(self._transform_listeners):
            listener(batch)

    # ========================================================================
    # Queries and telemetry
    # ========================================================================

    def get_transforms(self) -> TransformBatch:
        """
        Latest positions and orientations for rendering.

        Before the first tick this reflects the freshly spawned population.
        """
        if self._last_transforms is None:
            return TransformBatch(
                tick=self.tick_count,
                positions=self._positions.copy(),
                orientations=self._orientations.copy()
            )
        return self._last_transforms

    def get_tick_stats(self) -> dict:
        """
        Get current tick timing statistics.

        Returns:
            Dict with tick_count, agent_count, avg_tick_time_ms, last_tick_time_ms,
            policy_failures_last_tick, policy_failures_total
        """
        stats = {
            'tick_count': self.tick_count,
            'agent_count': len(self.agents),
            'avg_tick_time_ms': 0.0,
            'last_tick_time_ms': 0.0,
            'policy_failures_last_tick': self._policy_failures_last_tick,
            'policy_failures_total': self._policy_failures_total,
        }

        if self._tick_times:
            stats['avg_tick_time_ms'] = self._tick_time_sum / len(self._tick_times) * 1000.0
            stats['last_tick_time_ms'] = self._tick_times[-1] * 1000.0

        return stats

    def _record_tick_time(self, elapsed: float):
        """
        Record tick timing for rolling average.

        Args:
            elapsed: Tick time in seconds
        """
        self._tick_times.append(elapsed)
        self._tick_time_sum += elapsed

        # Maintain rolling window
        if len(self._tick_times) > self._tick_time_window:
            removed = self._tick_times.pop(0)
            self._tick_time_sum -= removed

        for times in (self._build_times, self._perception_times,
                      self._policy_times, self._integration_times):
            if len(times) > self._tick_time_window:
                times.pop(0)

    def get_snapshot(self) -> dict:
        """
        Get complete simulation state snapshot.

        Returns:
            Dict with tick_count, agents, timing
        """
        return {
            'tick_count': self.tick_count,
            'agent_count': len(self.agents),
            'consistency_mode': self.consistency_mode.value,
            'agents': [a.to_dict() for a in self.agents],
            'timing': self.get_tick_stats()
        }

    def print_tick_summary(self):
        """Print tick summary to console (lightweight monitoring)"""
        stats = self.get_tick_stats()
        print(f"Tick {stats['tick_count']:5d} | "
              f"Avg: {stats['avg_tick_time_ms']:6.3f} ms | "
              f"Last: {stats['last_tick_time_ms']:6.3f} ms | "
              f"Agents: {len(self.agents)} | "
              f"Policy failures: {stats['policy_failures_last_tick']}")

    def print_perf_breakdown(self, every: int = 200):
        """
        Print performance breakdown on interval.

        Logs timing breakdown: build_ms, perception_ms, policy_ms,
        integration_ms. Only prints every N ticks to reduce overhead.

        Args:
            every: Print interval in ticks (default 200)
        """
        if self.tick_count % every != 0:
            return

        window = min(every, len(self._build_times))
        if window == 0:
            return

        avg_build = sum(self._build_times[-window:]) / window * 1000.0
        avg_perception = sum(self._perception_times[-window:]) / window * 1000.0
        avg_policy = sum(self._policy_times[-window:]) / window * 1000.0
        avg_integration = sum(self._integration_times[-window:]) / window * 1000.0
        avg_total = sum(self._tick_times[-window:]) / window * 1000.0

        print(f"\n[Perf Breakdown] Tick {self.tick_count} ({len(self.agents)} agents)")
        print(f"  Index build:  {avg_build:6.3f} ms")
        print(f"  Perception:   {avg_perception:6.3f} ms")
        print(f"  Policy:       {avg_policy:6.3f} ms")
        print(f"  Integration:  {avg_integration:6.3f} ms")
        print(f"  Total:        {avg_total:6.3f} ms")
        print(f"  Overhead:     {(avg_total - avg_build - avg_perception - avg_policy - avg_integration):6.3f} ms")
