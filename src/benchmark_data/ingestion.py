"""CSV ingestion for benchmark rank-threshold tables.

Handles the quirks of spreadsheet exports:
- Category/Subcategory cells left blank under a merged header row
- Comma-formatted numbers (e.g., "1,200")
- Blank spacer rows and trailing empty columns
- Missing thresholds for some ranks of some scenarios
"""

import logging
from pathlib import Path
from typing import Dict, List

import pandas as pd

from src.benchmark_data.config import (
    CATEGORY_COLUMN,
    FILE_GLOB,
    FILE_PATTERN,
    LEADING_COLUMNS,
    SCENARIO_COLUMN,
    SUBCATEGORY_COLUMN,
)
from src.benchmark_data.models import BenchmarkScenario

logger = logging.getLogger(__name__)


class BenchmarkLoadError(Exception):
    """Raised when a benchmark CSV cannot be read."""


def _parse_numeric(value):
    """Parse a numeric string that may contain commas (e.g., '1,200.5' -> 1200.5)."""
    if pd.isna(value):
        return float("nan")
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).replace(",", "").strip().strip('"')
    if s == "" or s.isspace():
        return float("nan")
    try:
        return float(s)
    except ValueError:
        return float("nan")


def _text(value) -> str:
    """Return a cleaned string, or "" for missing cells."""
    if value is None or pd.isna(value):
        return ""
    return str(value)


def difficulty_from_path(filepath: Path) -> str:
    """Derive the difficulty label from a file name: ranks_medium.csv -> Medium."""
    stem = filepath.stem
    prefix = FILE_PATTERN.split("{", 1)[0]
    if stem.startswith(prefix):
        stem = stem[len(prefix):]
    return stem.replace("_", " ").title()


class BenchmarkIngester:
    """Reads ``ranks_<difficulty>.csv`` tables into BenchmarkScenario lists.

    Each table has the leading columns Category, Subcategory, Scenario; every
    following column is a rank name whose cells hold the score threshold.
    """

    def __init__(self, benchmarks_dir: Path):
        self.benchmarks_dir = Path(benchmarks_dir)

    def discover_files(self) -> List[Path]:
        """All threshold tables in the directory, sorted by name."""
        if not self.benchmarks_dir.is_dir():
            logger.warning("Benchmarks directory not found: %s", self.benchmarks_dir)
            return []
        return sorted(self.benchmarks_dir.glob(FILE_GLOB))

    def read_table(self, filepath: Path) -> pd.DataFrame:
        """Read and clean one threshold table.

        Returns a DataFrame with the leading columns as strings and every rank
        column parsed as floats (NaN where the cell is blank or invalid).
        """
        logger.info("Reading benchmark table: %s", filepath.name)

        try:
            df = pd.read_csv(filepath, dtype=str, quotechar='"', skip_blank_lines=True)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise BenchmarkLoadError(f"Failed to read {filepath}: {e}") from e

        df.columns = [str(c).strip() for c in df.columns]
        df = df[[c for c in df.columns if not c.startswith("Unnamed")]].copy()

        missing = [c for c in LEADING_COLUMNS if c not in df.columns]
        if missing:
            raise BenchmarkLoadError(
                f"Benchmark table {filepath.name} missing columns: {missing}"
            )

        for col in LEADING_COLUMNS:
            df[col] = df[col].str.strip('"').str.strip()
            df[col] = df[col].where(df[col] != "", None)

        # Merged spreadsheet cells export as blanks below the first row
        df[[CATEGORY_COLUMN, SUBCATEGORY_COLUMN]] = df[
            [CATEGORY_COLUMN, SUBCATEGORY_COLUMN]
        ].ffill()

        df = df[df[SCENARIO_COLUMN].notna()].reset_index(drop=True)
        df = df.drop_duplicates(subset=[SCENARIO_COLUMN], keep="first")

        for col in self.rank_columns(df):
            df[col] = df[col].apply(_parse_numeric)

        logger.info("Loaded %d scenarios from %s", len(df), filepath.name)
        return df

    @staticmethod
    def rank_columns(df: pd.DataFrame) -> List[str]:
        """Rank-name columns in table order (lowest rank first)."""
        return [c for c in df.columns if c not in LEADING_COLUMNS]

    def to_scenarios(self, df: pd.DataFrame) -> List[BenchmarkScenario]:
        """Convert a cleaned table to BenchmarkScenario objects."""
        rank_cols = self.rank_columns(df)
        scenarios = []

        for _, row in df.iterrows():
            thresholds = {
                col: float(row[col]) for col in rank_cols if not pd.isna(row[col])
            }
            scenarios.append(
                BenchmarkScenario(
                    name=row[SCENARIO_COLUMN],
                    category=_text(row[CATEGORY_COLUMN]),
                    subcategory=_text(row[SUBCATEGORY_COLUMN]),
                    thresholds=thresholds,
                    rank_order=list(rank_cols),
                )
            )

        return scenarios

    def read_all(self) -> Dict[str, Dict]:
        """Read every table in the directory.

        Returns:
            dict mapping difficulty label to
            ``{"rank_names": [...], "scenarios": [BenchmarkScenario, ...]}``.

        Raises:
            BenchmarkLoadError: if any table cannot be read.
        """
        tiers: Dict[str, Dict] = {}
        for filepath in self.discover_files():
            df = self.read_table(filepath)
            tiers[difficulty_from_path(filepath)] = {
                "rank_names": self.rank_columns(df),
                "scenarios": self.to_scenarios(df),
            }
        return tiers
