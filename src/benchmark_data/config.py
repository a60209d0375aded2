from pathlib import Path

# Base project directory
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Threshold tables, one CSV per difficulty tier
BENCHMARKS_DIR = PROJECT_ROOT / "data" / "benchmarks"

# File name pattern (difficulty is lower-cased, e.g. ranks_medium.csv)
FILE_PATTERN = "ranks_{difficulty}.csv"
FILE_GLOB = "ranks_*.csv"

# Leading columns; every column after these is a rank threshold
CATEGORY_COLUMN = "Category"
SUBCATEGORY_COLUMN = "Subcategory"
SCENARIO_COLUMN = "Scenario"
LEADING_COLUMNS = [CATEGORY_COLUMN, SUBCATEGORY_COLUMN, SCENARIO_COLUMN]
