from .gcs import get_bucket_name
from .scoring import ScoringEngine, ScoringPolicy, ScoringWeights

__all__ = ["get_bucket_name", "ScoringEngine", "ScoringPolicy", "ScoringWeights"]
