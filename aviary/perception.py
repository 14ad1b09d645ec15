"""
Neighbor Perception API

Provides a stable interface for the bounded, tiered neighbor query that
feeds every movement policy invocation.

Backends:
- O(n) scan (vectorized numpy), the reference implementation
- scipy.cKDTree ball queries (drop-in replacement, no call site changes)

Both backends hand their candidates to select_tiered(), so tiering, cap,
and ordering never depend on the backend.
"""

import numpy as np
import time
from typing import List, Optional, Tuple

from scipy.spatial import cKDTree

from .data_types import NearbyAgent
from .constants import (
    CLOSE_RANGE,
    MAX_CLOSE_NEIGHBORS,
    USE_CKDTREE,
    CKDTREE_LEAFSIZE,
    DRIFT_EPSILON,
)


# ============================================================================
# Tier Selection (shared by all backends)
# ============================================================================

def select_tiered(
    distances: np.ndarray,
    indices: np.ndarray,
    cap: int,
    close_range: float = CLOSE_RANGE,
    max_close: int = MAX_CLOSE_NEIGHBORS
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pick the bounded, prioritized neighbor set from in-range candidates.

    Candidates are split into a close tier (distance <= close_range) and an
    outer tier (the rest). Up to min(cap, max_close) close neighbors are
    taken first, nearest first; remaining capacity is filled from the outer
    tier, nearest first. Close neighbors beyond the sub-cap are dropped even
    when they are nearer than the outer neighbors that get taken.

    Args:
        distances: (M,) distances of candidates already within the radius
        indices: (M,) population indices of the candidates
        cap: Maximum result length (K)
        close_range: Close tier threshold (C)
        max_close: Close tier sub-cap

    Returns:
        Tuple of (selected_indices, selected_distances), close tier first

    Tie-breaking:
        Equal distances resolved by ascending population index
    """
    indices = np.asarray(indices, dtype=np.intp)
    distances = np.asarray(distances, dtype=np.float64)

    if cap <= 0 or len(indices) == 0:
        return np.empty(0, dtype=np.intp), np.empty(0, dtype=np.float64)

    order = np.lexsort((indices, distances))
    sorted_idx = indices[order]
    sorted_dist = distances[order]

    close_mask = sorted_dist <= close_range
    close_take = min(cap, max_close)
    close_idx = sorted_idx[close_mask][:close_take]
    close_dist = sorted_dist[close_mask][:close_take]

    remaining_slots = cap - len(close_idx)
    outer_idx = sorted_idx[~close_mask][:remaining_slots]
    outer_dist = sorted_dist[~close_mask][:remaining_slots]

    return np.concatenate([close_idx, outer_idx]), np.concatenate([close_dist, outer_dist])


def _measure(positions: np.ndarray, rows: np.ndarray, origin: np.ndarray) -> np.ndarray:
    """Euclidean distances from origin to positions[rows]"""
    diff = positions[rows] - origin
    return np.sqrt(np.einsum('ij,ij->i', diff, diff))


def _to_nearby(
    rows: np.ndarray,
    distances: np.ndarray,
    positions: np.ndarray,
    velocities: np.ndarray
) -> List[NearbyAgent]:
    return [
        NearbyAgent(
            position=positions[row].copy(),
            velocity=velocities[row].copy(),
            distance=float(dist),
            index=int(row)
        )
        for row, dist in zip(rows, distances)
    ]


# ============================================================================
# O(n) Reference Scan
# ============================================================================

def find_nearby_agents(
    observer_position: np.ndarray,
    exclude_index: int,
    positions: np.ndarray,
    velocities: np.ndarray,
    radius: float,
    cap: int,
    close_range: float = CLOSE_RANGE
) -> List[NearbyAgent]:
    """
    Find the tiered neighbor set of one observer by scanning every agent.

    Args:
        observer_position: Observer position [x, y, z]
        exclude_index: Population index of the observer (never returned)
        positions: (N, 3) population positions
        velocities: (N, 3) population velocities
        radius: Perception radius (R)
        cap: Maximum neighbors returned (K)
        close_range: Close tier threshold (C)

    Returns:
        List of NearbyAgent, close tier first, each tier nearest first
    """
    n = len(positions)
    if cap <= 0 or radius < 0 or n == 0:
        return []

    all_rows = np.arange(n, dtype=np.intp)
    distances = _measure(positions, all_rows, observer_position)

    mask = distances <= radius
    if 0 <= exclude_index < n:
        mask[exclude_index] = False

    rows = all_rows[mask]
    selected, selected_dist = select_tiered(distances[mask], rows, cap, close_range)
    return _to_nearby(selected, selected_dist, positions, velocities)


# ============================================================================
# PerceptionIndex Class with cKDTree
# ============================================================================

class PerceptionIndex:
    """
    Perception adapter with stable API.

    Backend selection via constants.USE_CKDTREE:
    - True: Uses scipy.cKDTree ball queries
    - False: Uses the O(n) scan

    The index keeps references to the population arrays, so queries always
    measure against current (live) values. The tree itself is built from the
    positions at build() time; `drift` bounds how far any agent may move
    before the next build. Tree queries widen the radius by that bound and
    re-measure every candidate against the live arrays, so a moving
    population yields exactly the same neighbors as the scan.
    """

    def __init__(self, use_ckdtree: Optional[bool] = None, leafsize: Optional[int] = None):
        """
        Initialize perception adapter.

        Args:
            use_ckdtree: Override USE_CKDTREE constant (for testing)
            leafsize: Override CKDTREE_LEAFSIZE constant (for testing)
        """
        self._use_ckdtree = use_ckdtree if use_ckdtree is not None else USE_CKDTREE
        self._leafsize = leafsize if leafsize is not None else CKDTREE_LEAFSIZE

        self._positions: np.ndarray = np.empty((0, 3), dtype=np.float64)
        self._velocities: np.ndarray = np.empty((0, 3), dtype=np.float64)
        self._tree: Optional[cKDTree] = None
        self._drift: float = 0.0

        # Build sequence counter (incremented on every build)
        self._build_seq: int = 0

        # Build timing (for performance breakdown logging)
        self.last_build_ms: float = 0.0

    @property
    def uses_ckdtree(self) -> bool:
        return self._use_ckdtree

    def build(self, positions: np.ndarray, velocities: np.ndarray, drift: float = 0.0):
        """
        Build the index over a population.

        Args:
            positions: (N, 3) positions; referenced, not copied
            velocities: (N, 3) velocities; referenced, not copied
            drift: Max distance any agent can move before the next build
        """
        if len(positions) != len(velocities):
            raise ValueError(
                f"positions ({len(positions)}) and velocities ({len(velocities)}) differ in length"
            )

        self._positions = positions
        self._velocities = velocities
        self._drift = max(0.0, float(drift))
        self._build_seq += 1

        self.last_build_ms = 0.0
        if self._use_ckdtree and len(positions) > 0:
            build_start = time.perf_counter()
            self._tree = cKDTree(positions, leafsize=self._leafsize, copy_data=True)
            self.last_build_ms = (time.perf_counter() - build_start) * 1000.0
        else:
            self._tree = None

    def find_nearby(
        self,
        observer_index: int,
        radius: float,
        cap: int,
        close_range: float = CLOSE_RANGE,
        observer_position: Optional[np.ndarray] = None
    ) -> List[NearbyAgent]:
        """
        Tiered neighbor query for one observer.

        Args:
            observer_index: Population index of the observer (excluded)
            radius: Perception radius (R)
            cap: Maximum neighbors returned (K)
            close_range: Close tier threshold (C)
            observer_position: Override position (default: live position of observer)

        Returns:
            List of NearbyAgent, close tier first, each tier nearest first
        """
        if observer_position is None:
            observer_position = self._positions[observer_index]

        if self._tree is None:
            return find_nearby_agents(
                observer_position, observer_index,
                self._positions, self._velocities,
                radius, cap, close_range
            )

        if cap <= 0 or radius < 0:
            return []

        search_radius = radius + self._drift + DRIFT_EPSILON
        rows = np.asarray(self._tree.query_ball_point(observer_position, r=search_radius), dtype=np.intp)
        rows = rows[rows != observer_index]
        if len(rows) == 0:
            return []

        # Re-measure against live positions; tree coordinates may be stale
        distances = _measure(self._positions, rows, observer_position)
        mask = distances <= radius

        selected, selected_dist = select_tiered(distances[mask], rows[mask], cap, close_range)
        return _to_nearby(selected, selected_dist, self._positions, self._velocities)
