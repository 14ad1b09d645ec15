"""
Deterministic RNG utilities for the flock simulation.

Uses SHA256 hashing to derive stable seeds from hierarchical components
(world_seed, purpose, generation). All randomness uses
numpy.random.Generator(PCG64) for reproducible cross-session results.
"""

import hashlib
import numpy as np
from typing import Any


def make_seed(*components: Any) -> int:
    """
    Generate deterministic 64-bit seed from hierarchical components.

    Uses SHA256 to hash components into stable seed value.

    Args:
        *components: Seed components (world_seed, purpose, generation, etc.)

    Returns:
        64-bit integer seed for numpy RNG

    Example:
        population_seed = make_seed(world_seed, "population", 0)
        policy_seed = make_seed(world_seed, "flocking")
    """
    hash_input = ":".join(str(c) for c in components)

    hash_bytes = hashlib.sha256(hash_input.encode('utf-8')).digest()
    seed = int.from_bytes(hash_bytes[:8], byteorder='big')

    return seed


def make_generator(*components: Any) -> np.random.Generator:
    """
    Build a PCG64 generator seeded from hierarchical components.

    Args:
        *components: Passed straight to make_seed()

    Returns:
        numpy Generator
    """
    return np.random.Generator(np.random.PCG64(make_seed(*components)))
