"""Mind Map Platform Schemas"""

from .idea_schema import (
    Idea, Position, PositionUpdate, MaterializeResult,
    GenerationType, LayoutStrategy, NormalizationTier, DEFAULT_CONFIDENCE
)

__all__ = [
    'Idea', 'Position', 'PositionUpdate', 'MaterializeResult',
    'GenerationType', 'LayoutStrategy', 'NormalizationTier', 'DEFAULT_CONFIDENCE'
]
