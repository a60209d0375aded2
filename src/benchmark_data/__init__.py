from src.benchmark_data.benchmark_service import BenchmarkService
from src.benchmark_data.ingestion import BenchmarkIngester, BenchmarkLoadError
from src.benchmark_data.models import BenchmarkScenario

__all__ = [
    "BenchmarkIngester",
    "BenchmarkLoadError",
    "BenchmarkScenario",
    "BenchmarkService",
]
