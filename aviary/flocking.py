"""
Reference movement policy: distance-weighted flocking.

Combines separation, alignment, cohesion, long-range flock merging,
altitude keeping, forward drive, and boundary turning into one
acceleration. It is one example of the movement policy contract, not
part of the contract itself.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional

from .data_types import MovementInput, MovementOutput, NearbyAgent
from .spatial import normalize
from .constants import TERRAIN_SIZE_DEFAULT


@dataclass
class FlockingParams:
    """Flocking tunables (loaded by loader.load_flocking_params)"""
    # Flocking behavior strengths
    separation_distance: float = 3.0
    separation_strength: float = 15.0
    alignment_strength: float = 1.5
    cohesion_strength: float = 1.2
    long_range_strength: float = 5.0
    long_range_min: float = 20.0
    long_range_max: float = 80.0

    # Height constraints
    min_height: float = 0.0
    max_height: float = 100.0
    target_height: float = 50.0
    ground_buffer: float = 5.0

    # Movement
    forward_speed: float = 5.0
    boundary_turn_strength: float = 20.0
    boundary_distance: float = 100.0

    # Chance per invocation of emitting a fresh randomTurn/randomSpeed patch
    variable_update_chance: float = 0.01


def _inverse_distance_weights(nearby: List[NearbyAgent]) -> np.ndarray:
    """Closer neighbors get more influence: w = 1 / (d + 1)"""
    return np.array([1.0 / (n.distance + 1.0) for n in nearby], dtype=np.float64)


def _separation(position: np.ndarray, nearby: List[NearbyAgent], params: FlockingParams) -> np.ndarray:
    force = np.zeros(3, dtype=np.float64)

    for neighbor in nearby:
        if 0.0 < neighbor.distance < params.separation_distance:
            away, _ = normalize(position - neighbor.position)
            force += away / neighbor.distance  # Stronger when closer

    direction, length = normalize(force)
    if length == 0.0:
        return force
    return direction * params.separation_strength


def _alignment(velocity: np.ndarray, nearby: List[NearbyAgent], weights: np.ndarray,
               params: FlockingParams) -> np.ndarray:
    velocities = np.array([n.velocity for n in nearby], dtype=np.float64)
    average_velocity = weights @ velocities / weights.sum()
    return (average_velocity - velocity) * params.alignment_strength


def _cohesion(position: np.ndarray, nearby: List[NearbyAgent], weights: np.ndarray,
              params: FlockingParams) -> np.ndarray:
    positions = np.array([n.position for n in nearby], dtype=np.float64)
    center_of_mass = weights @ positions / weights.sum()
    return (center_of_mass - position) * params.cohesion_strength


def _long_range(position: np.ndarray, nearby: List[NearbyAgent], params: FlockingParams) -> np.ndarray:
    """Pull toward mid-range agents, which are likely in another flock"""
    force = np.zeros(3, dtype=np.float64)
    span = params.long_range_max - params.long_range_min
    if span <= 0.0:
        return force

    for neighbor in nearby:
        if params.long_range_min < neighbor.distance < params.long_range_max:
            toward, _ = normalize(neighbor.position - position)
            strength = (params.long_range_max - neighbor.distance) / span
            force += toward * (strength * params.long_range_strength)

    return force


def _height(position: np.ndarray, velocity: np.ndarray, params: FlockingParams) -> np.ndarray:
    force = np.zeros(3, dtype=np.float64)
    y = position[1]

    if y < params.min_height + params.ground_buffer:
        # Near the ground: strong lift, scaled by how close
        distance_from_min = y - params.min_height
        if params.ground_buffer > 0.0:
            urgency = max(0.0, 1.0 - distance_from_min / params.ground_buffer)
        else:
            urgency = 1.0
        force[1] += 50.0 + urgency * 100.0

        if velocity[1] < 0.0:
            force[1] += -velocity[1] * 5.0
    elif y > params.max_height:
        force[1] -= 10.0
    elif abs(y - params.target_height) > 5.0:
        force[1] += (params.target_height - y) * 0.5

    return force


def _forward(velocity: np.ndarray, params: FlockingParams) -> np.ndarray:
    direction, speed = normalize(velocity)
    if speed >= 10.0:
        return np.zeros(3, dtype=np.float64)
    if speed == 0.0:
        direction = np.array([1.0, 0.0, 0.0], dtype=np.float64)
    return direction * params.forward_speed


def _boundary(position: np.ndarray, half_size: float, params: FlockingParams) -> np.ndarray:
    force = np.zeros(3, dtype=np.float64)
    if params.boundary_distance <= 0.0:
        return force

    for axis in (0, 2):
        distance_from_edge = half_size - abs(position[axis])
        if distance_from_edge < params.boundary_distance:
            urgency = 1.0 - distance_from_edge / params.boundary_distance
            sign = -1.0 if position[axis] > 0.0 else 1.0
            force[axis] += sign * urgency * params.boundary_turn_strength

    return force


class FlockingPolicy:
    """
    Flocking movement policy.

    Args:
        params: Flocking tunables
        terrain_size: World extent used for boundary turning
        rng: Generator for the occasional variable patch (seed it for determinism)
    """

    def __init__(
        self,
        params: Optional[FlockingParams] = None,
        terrain_size: float = TERRAIN_SIZE_DEFAULT,
        rng: Optional[np.random.Generator] = None
    ):
        self.params = params if params is not None else FlockingParams()
        self.terrain_size = terrain_size
        self.rng = rng if rng is not None else np.random.default_rng()

    def __call__(self, movement_input: MovementInput) -> MovementOutput:
        params = self.params
        state = movement_input.current_state
        nearby = movement_input.nearby_entities
        position = state.position
        velocity = state.velocity

        acceleration = _separation(position, nearby, params)

        if nearby:
            weights = _inverse_distance_weights(nearby)
            acceleration = acceleration + _alignment(velocity, nearby, weights, params)
            acceleration = acceleration + _cohesion(position, nearby, weights, params)
            acceleration = acceleration + _long_range(position, nearby, params)

        acceleration = acceleration + _height(position, velocity, params)
        acceleration = acceleration + _forward(velocity, params)
        acceleration = acceleration + _boundary(position, self.terrain_size / 2.0, params)

        variable_patch = None
        if self.rng.random() < params.variable_update_chance:
            variable_patch = {
                'randomTurn': float(self.rng.uniform(-1.0, 1.0)),
                'randomSpeed': float(self.rng.random()),
            }

        return MovementOutput(acceleration=acceleration, variable_patch=variable_patch)
