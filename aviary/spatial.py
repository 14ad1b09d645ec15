"""
Spatial utility functions for 3D geometry.

Helper functions for distances, guarded normalization, speed clamping,
and the facing quaternions handed to the transform-sync collaborator.
"""

import numpy as np
from typing import Tuple


def distance_3d(pos_a: np.ndarray, pos_b: np.ndarray) -> float:
    """
    Calculate Euclidean distance between two 3D points.

    Args:
        pos_a: Position [x, y, z]
        pos_b: Position [x, y, z]

    Returns:
        Distance in world units
    """
    diff = pos_a - pos_b
    return float(np.sqrt(np.dot(diff, diff)))


def normalize(vec: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Normalize vector to unit length.

    Zero-length input is never divided: it comes back as a zero vector
    with length 0.0 so callers can add it without a branch.

    Args:
        vec: Vector to normalize [x, y, z]

    Returns:
        Tuple of (normalized vector, original length)
    """
    length = float(np.sqrt(np.dot(vec, vec)))

    if length <= 0.0:
        return np.zeros(3, dtype=np.float64), 0.0

    return vec / length, length


def clamp_speed(velocity: np.ndarray, max_speed: float) -> np.ndarray:
    """
    Clamp velocity magnitude to maximum speed, preserving direction.

    Args:
        velocity: Velocity vector [vx, vy, vz]
        max_speed: Maximum allowed speed

    Returns:
        Velocity with clamped magnitude (the input object when already legal)
    """
    speed_sq = np.dot(velocity, velocity)

    if speed_sq > max_speed * max_speed:
        speed = np.sqrt(speed_sq)
        return velocity * (max_speed / speed)

    return velocity


def quaternion_from_unit_vectors(v_from: np.ndarray, v_to: np.ndarray) -> np.ndarray:
    """
    Shortest-arc rotation taking unit vector v_from onto unit vector v_to.

    Args:
        v_from: Unit vector [x, y, z]
        v_to: Unit vector [x, y, z]

    Returns:
        Unit quaternion [x, y, z, w]
    """
    r = float(np.dot(v_from, v_to)) + 1.0

    if r < 1e-8:
        # Opposite vectors: rotate 180 degrees about any axis orthogonal to v_from
        if abs(v_from[0]) > abs(v_from[2]):
            q = np.array([-v_from[1], v_from[0], 0.0, 0.0], dtype=np.float64)
        else:
            q = np.array([0.0, -v_from[2], v_from[1], 0.0], dtype=np.float64)
    else:
        axis = np.cross(v_from, v_to)
        q = np.array([axis[0], axis[1], axis[2], r], dtype=np.float64)

    return q / np.linalg.norm(q)


def identity_quaternion() -> np.ndarray:
    """Return the identity rotation [0, 0, 0, 1]."""
    return np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)
