"""
Numeric integration for agent motion.

Semi-implicit Euler: velocity is advanced first and clamped to the speed
cap, then position is advanced with the new velocity.
"""

import numpy as np
from typing import Tuple

from .agent import AgentState
from .spatial import clamp_speed, normalize, quaternion_from_unit_vectors
from .constants import MAX_SPEED, ORIENTATION_SPEED_THRESHOLD, MODEL_UP_AXIS

_UP = np.array(MODEL_UP_AXIS, dtype=np.float64)


def step_motion(
    position: np.ndarray,
    velocity: np.ndarray,
    acceleration: np.ndarray,
    dt: float,
    max_speed: float = MAX_SPEED
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Advance one body by dt.

    v' = v + a*dt, rescaled to max_speed if faster; p' = p + v'*dt.

    A non-positive dt is a no-op: the inputs come back as bit-identical
    copies (no arithmetic is performed on them).

    Args:
        position: Current position [x, y, z]
        velocity: Current velocity [vx, vy, vz]
        acceleration: Acceleration from the movement policy
        dt: Time step in seconds
        max_speed: Speed cap

    Returns:
        Tuple of (new_position, new_velocity)
    """
    if not dt > 0.0:
        return position.copy(), velocity.copy()

    new_velocity = clamp_speed(velocity + acceleration * dt, max_speed)
    new_position = position + new_velocity * dt

    return new_position, new_velocity


def integrate(agent: AgentState, acceleration: np.ndarray, dt: float, max_speed: float = MAX_SPEED):
    """
    Integrate one agent in place.

    Args:
        agent: Agent to update (position and velocity are replaced)
        acceleration: Acceleration [ax, ay, az]
        dt: Time step in seconds
        max_speed: Speed cap
    """
    if not dt > 0.0:
        return

    agent.position, agent.velocity = step_motion(
        agent.position, agent.velocity, acceleration, dt, max_speed
    )


def orientation_from_velocity(velocity: np.ndarray, previous: np.ndarray) -> np.ndarray:
    """
    Facing quaternion for rendering.

    Rotates the model up axis onto the velocity direction when the agent
    is moving faster than ORIENTATION_SPEED_THRESHOLD; otherwise keeps the
    previous orientation.

    Args:
        velocity: Agent velocity [vx, vy, vz]
        previous: Previous orientation [x, y, z, w]

    Returns:
        Orientation quaternion [x, y, z, w]
    """
    direction, speed = normalize(velocity)
    if speed <= ORIENTATION_SPEED_THRESHOLD:
        return previous
    return quaternion_from_unit_vectors(_UP, direction)
