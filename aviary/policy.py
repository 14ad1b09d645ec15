"""
Movement policy contract.

A movement policy is any callable mapping a MovementInput to a
MovementOutput. The simulation invokes it exactly once per agent per tick
and never inspects its internals. Policies must not mutate their input and
carry state forward only through the variable patch.
"""

import numpy as np
from typing import Any, Dict, Mapping, Optional, Protocol

from .data_types import MovementInput, MovementOutput


class MovementPolicy(Protocol):
    """Single-method capability: (MovementInput) -> MovementOutput"""

    def __call__(self, movement_input: MovementInput) -> MovementOutput:
        ...


def idle_policy(movement_input: MovementInput) -> MovementOutput:
    """
    Default policy: no steering at all.

    Agents coast on their current velocity.
    """
    return MovementOutput(acceleration=np.zeros(3, dtype=np.float64))


def sanitize_output(output: Any, agent_index: int) -> MovementOutput:
    """
    Coerce a policy result into a usable MovementOutput.

    Rules:
    - Acceleration must be a finite 3-vector, otherwise zero acceleration
    - Patch values must be finite numbers, otherwise that entry is dropped

    Every correction prints a [WARN] diagnostic naming the agent.

    Args:
        output: Whatever the policy returned
        agent_index: Population index (for diagnostics)

    Returns:
        MovementOutput safe to integrate and merge
    """
    if not isinstance(output, MovementOutput):
        print(f"[WARN] Movement policy returned {type(output).__name__} for agent {agent_index}, "
              f"using zero acceleration")
        return MovementOutput(acceleration=np.zeros(3, dtype=np.float64))

    try:
        acceleration = np.asarray(output.acceleration, dtype=np.float64).reshape(3)
    except (TypeError, ValueError, OverflowError):
        print(f"[WARN] Malformed acceleration for agent {agent_index}: {output.acceleration!r}, "
              f"using zero acceleration")
        acceleration = np.zeros(3, dtype=np.float64)

    if not np.all(np.isfinite(acceleration)):
        print(f"[WARN] Non-finite acceleration for agent {agent_index}: {acceleration.tolist()}, "
              f"using zero acceleration")
        acceleration = np.zeros(3, dtype=np.float64)

    return MovementOutput(
        acceleration=acceleration,
        variable_patch=_sanitize_patch(output.variable_patch, agent_index)
    )


def _sanitize_patch(patch: Any, agent_index: int) -> Optional[Dict[str, float]]:
    if patch is None:
        return None
    if not isinstance(patch, Mapping):
        print(f"[WARN] Dropping variable patch of type {type(patch).__name__} for agent {agent_index}")
        return None
    if not patch:
        return None

    clean = {}
    for key, value in patch.items():
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            print(f"[WARN] Dropping non-numeric variable '{key}' for agent {agent_index}")
            continue

        if not np.isfinite(number):
            print(f"[WARN] Dropping non-finite variable '{key}' for agent {agent_index}")
            continue

        clean[str(key)] = number

    return clean or None
