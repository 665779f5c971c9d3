"""Provider ranking score computation."""

from .engine import (
    completion_rate,
    compute_score,
    consistency_points,
    punctuality_score,
    quality_consistency,
    rating_volume_score,
    response_rate,
)
from .models import ProviderScore, ScoreDetails
from .service import ScoringService

__all__ = [
    "completion_rate",
    "compute_score",
    "consistency_points",
    "punctuality_score",
    "quality_consistency",
    "rating_volume_score",
    "response_rate",
    "ProviderScore",
    "ScoreDetails",
    "ScoringService",
]
