# Application Stats Package
from .metrics_calculator import CardInsight, CollectionStats, MetricsCalculator
from .service import CollectionStatsService

__all__ = ["MetricsCalculator", "CardInsight", "CollectionStats", "CollectionStatsService"]
