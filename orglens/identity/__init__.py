"""
Identity module: name folding, pair scoring and cross-reference resolution
"""

from .name_normalization import normalize_person_name, title_tokens
from .scoring import PairScorer, name_similarity, structural_compatibility
from .resolve_people import CrossReferenceResolver, ResolutionResult, ResolutionSummary

__all__ = [
    'CrossReferenceResolver',
    'PairScorer',
    'ResolutionResult',
    'ResolutionSummary',
    'name_similarity',
    'normalize_person_name',
    'structural_compatibility',
    'title_tokens',
]
