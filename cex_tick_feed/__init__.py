"""CEX Tick Feed - trade tick ingestion and bar aggregation for cryptocurrency exchanges.

Provides:
- Resumable, deduplicated Kraken trade ingestion with progress events
- DuckDB tick store and sequence-id integrity verification
- Time, calendar and tick-count bars built from stored ticks
"""

__version__ = "0.1.0"

from .bars import Bar, BarSeries, build_candles
from .db import TickStore
from .periods import PeriodSpec, PeriodUnit, parse_period
from .pipeline import ExchangeIngestionPipeline, IngestSummary
from .validation import IntegrityReport, IntegrityVerifier

__all__ = [
    "Bar",
    "BarSeries",
    "build_candles",
    "TickStore",
    "PeriodSpec",
    "PeriodUnit",
    "parse_period",
    "ExchangeIngestionPipeline",
    "IngestSummary",
    "IntegrityReport",
    "IntegrityVerifier",
    "__version__",
]
