"""
Agent spawning system.

Creates populations with deterministic placement over the terrain and
re-randomizes existing populations in place.
"""

import numpy as np
from typing import List

from .agent import AgentState
from .constants import (
    SPAWN_EXTENT_FRACTION,
    SPAWN_HEIGHT_MIN,
    SPAWN_HEIGHT_MAX,
    SPAWN_VELOCITY_HALF_RANGE,
)


def draw_positions(rng: np.random.Generator, count: int, terrain_size: float) -> np.ndarray:
    """
    Uniform positions over the central 80% of the terrain, 20-100 units up.

    Args:
        rng: Random generator
        count: Number of positions
        terrain_size: World extent

    Returns:
        (count, 3) float64 array
    """
    extent = SPAWN_EXTENT_FRACTION * terrain_size
    positions = np.empty((count, 3), dtype=np.float64)
    positions[:, 0] = rng.uniform(-extent, extent, size=count)
    positions[:, 1] = rng.uniform(SPAWN_HEIGHT_MIN, SPAWN_HEIGHT_MAX, size=count)
    positions[:, 2] = rng.uniform(-extent, extent, size=count)
    return positions


def draw_velocities(rng: np.random.Generator, count: int) -> np.ndarray:
    """
    Small per-axis uniform velocities.

    Returns:
        (count, 3) float64 array
    """
    half_range = np.array(SPAWN_VELOCITY_HALF_RANGE, dtype=np.float64)
    return rng.uniform(-half_range, half_range, size=(count, 3))


def spawn_agents(rng: np.random.Generator, count: int, terrain_size: float) -> List[AgentState]:
    """
    Spawn a fresh population.

    Args:
        rng: Random generator (seed via rng.make_generator for determinism)
        count: Number of agents
        terrain_size: World extent

    Returns:
        List of AgentState with empty variable stores
    """
    positions = draw_positions(rng, count, terrain_size)
    velocities = draw_velocities(rng, count)

    return [
        AgentState(position=positions[i].copy(), velocity=velocities[i].copy())
        for i in range(count)
    ]


def randomize_agents(rng: np.random.Generator, agents: List[AgentState], terrain_size: float):
    """
    Re-draw position and velocity of every agent in place.

    Population size and variable stores are left untouched.

    Args:
        rng: Random generator
        agents: Population to randomize
        terrain_size: World extent
    """
    count = len(agents)
    positions = draw_positions(rng, count, terrain_size)
    velocities = draw_velocities(rng, count)

    for i, agent in enumerate(agents):
        agent.position = positions[i].copy()
        agent.velocity = velocities[i].copy()
