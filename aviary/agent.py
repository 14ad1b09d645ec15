"""
Agent runtime representation.

Agents are created when a population is spawned and live until the
population is resized or reset. Each agent has a position, a velocity,
and an open-ended set of named scalar variables that movement policies
carry forward between ticks through variable patches.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional


def merge_variables(base: Dict[str, float], patch: Optional[Mapping[str, float]]) -> Dict[str, float]:
    """
    Merge a variable patch into a variable store in place.

    Patch keys overwrite existing keys; keys absent from the patch are
    left untouched. No key is special-cased.

    Args:
        base: Variable store to update
        patch: Partial update (None or empty = no change)

    Returns:
        The updated base dict

    Example:
        merge_variables({'a': 1.0}, {'a': 2.0, 'b': 3.0}) -> {'a': 2.0, 'b': 3.0}
    """
    if patch:
        for key, value in patch.items():
            base[key] = float(value)
    return base


@dataclass
class AgentState:
    """
    Runtime agent in simulation.

    Attributes:
        position: 3D position [x, y, z] (y = height above ground)
        velocity: 3D velocity [vx, vy, vz] in units/s
        variables: Named scalar variables ("random variables") owned by policies
    """
    position: np.ndarray  # [x, y, z] float64
    velocity: np.ndarray  # [vx, vy, vz] float64
    variables: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        """Ensure position and velocity are float64 arrays"""
        if not isinstance(self.position, np.ndarray):
            self.position = np.array(self.position, dtype=np.float64)
        else:
            self.position = self.position.astype(np.float64, copy=False)

        if not isinstance(self.velocity, np.ndarray):
            self.velocity = np.array(self.velocity, dtype=np.float64)
        else:
            self.velocity = self.velocity.astype(np.float64, copy=False)

        if self.variables is None:
            self.variables = {}

    def copy(self) -> 'AgentState':
        """Detached copy; mutating it never touches the stored agent."""
        return AgentState(
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            variables=dict(self.variables)
        )

    def merge_variables(self, patch: Optional[Mapping[str, float]]):
        """Apply a variable patch (patch overwrites, absent keys untouched)."""
        merge_variables(self.variables, patch)

    def speed(self) -> float:
        return float(np.sqrt(np.dot(self.velocity, self.velocity)))

    def to_dict(self) -> dict:
        """
        Serialize agent to JSON-compatible dict.

        Returns:
            Dict with all agent fields
        """
        return {
            'position': self.position.tolist(),
            'velocity': self.velocity.tolist(),
            'variables': dict(self.variables)
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AgentState':
        """
        Deserialize agent from dict.

        Args:
            data: Dict with agent fields

        Returns:
            AgentState instance
        """
        return cls(
            position=np.array(data['position'], dtype=np.float64),
            velocity=np.array(data['velocity'], dtype=np.float64),
            variables=dict(data.get('variables') or {})
        )
