"""
Terrain sampling collaborator.

The simulation asks the terrain for samples ahead of each agent and hands
them to the movement policy untouched. Real height/type sampling lives
outside the core; FlatTerrain is the stand-in used until then.
"""

import numpy as np
from typing import List

from .data_types import TerrainSample, SurfaceType
from .constants import TERRAIN_SAMPLE_COUNT


class FlatTerrain:
    """
    Terrain stub: flat open field everywhere.

    Any object with a compatible sample_ahead() can replace it.
    """

    def __init__(self, sample_count: int = TERRAIN_SAMPLE_COUNT):
        self.sample_count = sample_count

    def sample_ahead(self, position: np.ndarray, velocity: np.ndarray) -> List[TerrainSample]:
        """
        Return terrain samples ahead of an agent.

        Args:
            position: Agent position [x, y, z] (unused by the stub)
            velocity: Agent velocity [vx, vy, vz] (unused by the stub)

        Returns:
            sample_count samples, all height=0, field, normal=+Y
        """
        # TODO: march sample points along the velocity direction once a height field exists
        return [
            TerrainSample(
                height=0.0,
                surface_type=SurfaceType.FIELD,
                normal=np.array([0.0, 1.0, 0.0], dtype=np.float64)
            )
            for _ in range(self.sample_count)
        ]
