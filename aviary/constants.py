"""
Central configuration constants for the flock simulation.

Defines fixed core constants, default values, and feature toggles
used across multiple modules.
"""

# ============================================================================
# Motion Constants (fixed, not externally configurable)
# ============================================================================

# Speed cap enforced by the integrator after every update (units/second)
MAX_SPEED = 50.0

# Orientation is only re-derived above this speed (avoids snapping when hovering)
ORIENTATION_SPEED_THRESHOLD = 0.1

# Axis the rendered agent model points along at identity orientation
MODEL_UP_AXIS = (0.0, 1.0, 0.0)

# Upper bound on a single frame step, applied by callers (seconds)
MAX_DELTA_TIME = 0.1


# ============================================================================
# Perception Configuration
# ============================================================================

# Neighbors at or within this distance form the close tier (distance units)
CLOSE_RANGE = 20.0

# Hard sub-cap on close-tier neighbors, independent of max_entity_perception
MAX_CLOSE_NEIGHBORS = 7

# Defaults for the externally configurable perception surface
PERCEPTION_RADIUS_DEFAULT = 100.0
MAX_ENTITY_PERCEPTION_DEFAULT = 30

# Enable scipy.cKDTree spatial indexing
# Set to False to use the O(n) scan for performance comparison
USE_CKDTREE = True

# cKDTree build parameters
CKDTREE_LEAFSIZE = 16

# Slack added to the drift bound so float rounding never hides a live neighbor
DRIFT_EPSILON = 1e-6


# ============================================================================
# Population Configuration
# ============================================================================

TERRAIN_SIZE_DEFAULT = 1000.0
ENTITY_COUNT_DEFAULT = 1000

# Horizontal spawn extent as a fraction of terrain_size (either side of 0)
SPAWN_EXTENT_FRACTION = 0.4

# Spawn height band (distance units above ground)
SPAWN_HEIGHT_MIN = 20.0
SPAWN_HEIGHT_MAX = 100.0

# Per-axis initial velocity half-ranges [vx, vy, vz]
SPAWN_VELOCITY_HALF_RANGE = (5.0, 2.5, 5.0)

# Default world seed
WORLD_SEED_DEFAULT = 12345


# ============================================================================
# Terrain Stub
# ============================================================================

# Number of samples handed to the policy each tick
TERRAIN_SAMPLE_COUNT = 5


# ============================================================================
# Performance Configuration
# ============================================================================

# Tick timing window for rolling average
TICK_TIME_WINDOW = 100  # Number of ticks to average
