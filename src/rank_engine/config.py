# Storage key prefix for per-player estimate maps
ESTIMATE_STORAGE_PREFIX = "rank_identity_state_v2"

# Sentinel continuous value for a scenario that has never been ranked
UNRANKED_VALUE = -1.0
UNRANKED_NAME = "Unranked"

# Fallback score interval when a scenario has a single threshold
VIRTUAL_INTERVAL_FALLBACK = 100.0

# Evolution
LEARNING_RATE = 0.5
ANCHOR_OFFSET = 2.0  # Big-win floor: session_rank - ANCHOR_OFFSET

# Decay
PHI = 1.0
DECAY_FLOOR_OFFSET = 2 * PHI  # Decay never drops below peak - 2*phi
DECAY_HALF_LIFE_DAYS = 30.0
DECAY_LINEAR_HORIZON_DAYS = 90.0
DECAY_MIN_DAYS = 1.0
CHANGE_TOLERANCE = 0.001

# Overplay penalty
PENALTY_CEILING = 5.0
PENALTY_ACCRUAL_RATE = 0.1  # Move 10% closer to the ceiling per play
PENALTY_DECAY_PER_DAY = 0.5
PENALTY_DAILY_LIFT = 0.5

# Peak seeding for unplayed scenarios
PEAK_SEED_BEST_FRACTION = 0.5
