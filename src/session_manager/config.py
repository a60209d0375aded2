from pathlib import Path

# Base project directory
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Persisted state (one JSON file per storage key)
STATE_DIR = PROJECT_ROOT / "data" / "state"

# Storage keys (per-player keys get a "_<player>" suffix)
SESSION_SETTINGS_KEY = "session_settings"
SESSION_STATE_PREFIX = "session_state"
RANKED_STATE_PREFIX = "ranked_session_state_v3"

# Default session settings
DEFAULT_SESSION_TIMEOUT_MINUTES = 10
DEFAULT_RANKED_INTERVAL_MINUTES = 60

# Ranked session parameters
GAUNTLET_SIZE = 3  # Scenarios in the initial Strong-Weak-Weak batch
RECENT_EXCLUSION_COUNT = 3  # Trailing scenarios skipped when extending
DIVERSITY_MARGIN = 1.0  # Max RU difference for a category-diversity swap
SORT_EPSILON = 0.0001
