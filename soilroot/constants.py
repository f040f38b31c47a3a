# soilroot/constants.py
import numpy as np

PI = np.pi

# Soil index
# Grid key scale: coordinates are quantized to 1e-4 before hashing.
KEY_SCALE = 1.0e4
# Fraction of the point count sampled for the unit spacing statistic, capped.
UNIT_LEN_SAMPLE_FRACTION = 0.4
UNIT_LEN_SAMPLE_MAX = 100
# Squared parametric distance to an extremal bound that counts as "on boundary".
BOUNDARY_TOLERANCE_SQ = 1.0e-2
# Legacy topology map: 6 sectors of 60 degrees, 5 degree tolerance.
TOPO_SECTOR_COUNT = 6
TOPO_SECTOR_TOLERANCE_DEG = 5.0
TOPO_NEXT_MEAN = 3.5
TOPO_NEXT_STD = 0.5

# Environmental steering
ENV_BOUNDARY_SAMPLES = 100
ENV_CONE_ENLARGE_DEG = 15.0
ENV_INSIDE_ATTRACTOR_SCALE = 2.0
ENV_INSIDE_REPELLER_SCALE = 0.3
ENV_ATTRACTOR_FORCE_MAX = 1.5
ENV_REPELLER_FORCE_MAX = 0.5
# Dot products are shrunk by this factor before acos.
ANGLE_DOT_CLAMP = 0.9999999

# Sectional (2D scored) growth
DEFAULT_TOTAL_STEPS = 10
DEFAULT_BRANCH_N = 2
BRANCHING_INTERVAL = 3
BRANCH_ANGLE_DEG = 45.0
SIDE_BRANCH_LIFESPAN = 4
UNLIMITED_LIFESPAN = -1
STEM_SCALE_RANGE = (80, 170)  # randint, percent of unit_len
MIN_STEP_DIST_SQ = 1.0e-4
MAX_LOCATION_USAGE = 20
SCORE_NEIGHBOURS = 25
SCORE_WARMUP_STEPS = 2
DENSITY_MULTIPLIER = 0.8
GRAVITY_MULTIPLIER = 0.5
# Exponential fit of the gravity factor against step / total_steps.
GRAVITY_FIT_A = 0.05731
GRAVITY_FIT_B = 3.22225
PERTURBATION_MULTIPLIER = 0.3
SEED_DISTANCE_FACTOR = 2.0
ROOT_TYPE_MAX_LEVEL = {"none": 0, "single": 1, "multi": 2}

# Planar (phase driven 2D) growth
PLANAR_MAX_PHASE = 5
PLANAR_SCALE_FACTORS = [1.0, 1.2, 1.5, 2.0, 2.5]
PLANAR_BRANCH_ANGLE_DEG = 30.0
PLANAR_EXTEND_ANGLE_DEG = 15.0
ABSORBENT_DIVISIONS = 5
ABSORBENT_ANGLE_DEG = 40.0
ABSORBENT_LENGTH_RATIO = 0.2

# 3D phase / lifespan model
MIN_PHASE = 1
MAX_PHASE = 12
# Exclusive end of open-ended branches, so they are still alive at MAX_PHASE.
PHASE_CEILING = MAX_PHASE + 1
TAP_ROOT_LENGTH_RATIO = 0.3
TAP_ROOT_PART_RATIOS = (0.6, 0.4)
TAP_ROOT_DENSITY_LIMIT = 1.5
GUIDED_STEPS = 5
GUIDED_NEIGHBOURS = 20
GUIDED_MIN_ALIGNMENT = 0.5
GUIDED_PREFERRED_WEIGHT = 0.4
GUIDED_PERTURB_RAD = 0.087
HORIZONTAL_THRESHOLD = 0.7
HORIZONTAL_MAX_VERTICAL = 0.3
EXPLORER_STEPS = 8
EXPLORER_HORIZONTAL_STEPS = 2
EXPLORER_LIFETIME = 2
INSUFFICIENT_DENSITY_MESSAGE = (
    "Soil context doesn't have enough points (density too low). "
    "Please increase the point number."
)

# Neighbour radial scaling
NEIGHBOUR_CONE_HALF_ANGLE_DEG = 90.0
NEIGHBOUR_DISTANCE_RATIO = 0.4
NEIGHBOUR_MIN_RADIUS_RATIO = 0.1
NEIGHBOUR_MIN_SCALE = 0.1

# Small epsilon for numerical stability
EPSILON = 1e-9
