"""
Data types exchanged between the simulation and its collaborators.

Perception results, terrain samples, policy input/output, configuration
(populated by loader.py from YAML), and the per-tick transform batch.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Dict, Optional
from enum import Enum

from .agent import AgentState
from .constants import (
    TERRAIN_SIZE_DEFAULT,
    ENTITY_COUNT_DEFAULT,
    PERCEPTION_RADIUS_DEFAULT,
    MAX_ENTITY_PERCEPTION_DEFAULT,
    MAX_DELTA_TIME,
    WORLD_SEED_DEFAULT,
)


# ============================================================================
# Perception
# ============================================================================

@dataclass
class NearbyAgent:
    """One perceived neighbor, recomputed every tick"""
    position: np.ndarray  # [x, y, z] copy of neighbor position
    velocity: np.ndarray  # [vx, vy, vz] copy of neighbor velocity
    distance: float  # Euclidean distance to observer (>= 0)
    index: int = -1  # Population index of the neighbor


# ============================================================================
# Terrain
# ============================================================================

class SurfaceType(str, Enum):
    """Surface classification reported by the terrain collaborator"""
    FIELD = "field"
    LAKE = "lake"
    HEDGEROW = "hedgerow"
    TREE = "tree"


@dataclass
class TerrainSample:
    """Terrain information at a sampled location ahead of an agent"""
    height: float
    surface_type: SurfaceType
    normal: np.ndarray  # [x, y, z] unit surface normal


# ============================================================================
# Movement Policy Contract
# ============================================================================

@dataclass
class MovementInput:
    """Everything a movement policy sees for one agent in one tick"""
    current_state: AgentState  # Detached copy of the agent
    nearby_entities: List[NearbyAgent]
    terrain_ahead: List[TerrainSample]
    delta_time: float


@dataclass
class MovementOutput:
    """Result of one policy invocation"""
    acceleration: np.ndarray  # [ax, ay, az]
    variable_patch: Optional[Dict[str, float]] = None  # Merged into agent variables


# ============================================================================
# Simulation Configuration
# ============================================================================

class ConsistencyMode(str, Enum):
    """
    How agents see each other within a single tick.

    SEQUENTIAL_LIVE: agents are updated in place in index order; agent i sees
        agents j < i after their update this tick and j > i before it.
    SNAPSHOT_BARRIER: every agent sees the frozen tick-start state.
    """
    SEQUENTIAL_LIVE = "sequential-live"
    SNAPSHOT_BARRIER = "snapshot-barrier"


@dataclass
class SimulationConfig:
    """Simulation tunables (mutable between ticks)"""
    terrain_size: float = TERRAIN_SIZE_DEFAULT
    entity_count: int = ENTITY_COUNT_DEFAULT
    perception_radius: float = PERCEPTION_RADIUS_DEFAULT
    max_entity_perception: int = MAX_ENTITY_PERCEPTION_DEFAULT
    consistency_mode: ConsistencyMode = ConsistencyMode.SEQUENTIAL_LIVE
    seed: int = WORLD_SEED_DEFAULT
    max_delta_time: float = MAX_DELTA_TIME  # Ceiling used by run()
    use_ckdtree: Optional[bool] = None  # None = constants.USE_CKDTREE

    def __post_init__(self):
        """Accept plain strings for the consistency mode (YAML input)"""
        if not isinstance(self.consistency_mode, ConsistencyMode):
            self.consistency_mode = ConsistencyMode(self.consistency_mode)


# ============================================================================
# Transform Sync
# ============================================================================

@dataclass
class TransformBatch:
    """Per-tick render data for every agent, published as one batch"""
    tick: int
    positions: np.ndarray  # (N, 3)
    orientations: np.ndarray  # (N, 4) quaternions [x, y, z, w]
