"""
Identity Engine: Pair Scoring
=============================
The three explainable signals compared for every candidate pair, and the
weighted score that decides whether a pair becomes a resolver edge.

    score = 0.6 * name_similarity
          + 0.25 * title_similarity
          + 0.15 * structural_compatibility

Scores are rounded to SCORE_PRECISION decimals so threshold comparisons
are not at the mercy of float summation order.
"""

from typing import FrozenSet, Optional

from rapidfuzz import fuzz

from orglens.config import EngineConfig
from orglens.identity.name_normalization import expand_synonyms, title_tokens
from orglens.index.build_index import department_key
from orglens.models import PairScore, PersonRecord

NAME_WEIGHT = 0.6
TITLE_WEIGHT = 0.25
STRUCTURE_WEIGHT = 0.15

# Split of title_similarity between title wording and classified role
TITLE_TOKEN_WEIGHT = 0.7
TITLE_ROLE_WEIGHT = 0.3

SCORE_PRECISION = 6

TITLE_STOPWORDS = frozenset({'of', 'the', 'and', 'for', 'to', 'in', 'at', 'a'})


def name_similarity(left_key: str, right_key: str) -> float:
    """
    Token-set similarity of two normalized name keys in [0, 1].

    Token order and a missing middle name do not lower the score. When
    either side is a single token, plain ratio is used instead so that a
    lone first name does not count as a full match.
    """
    if not left_key or not right_key:
        return 0.0
    if left_key == right_key:
        return 1.0
    if min(len(left_key.split()), len(right_key.split())) < 2:
        ratio = fuzz.ratio(left_key, right_key)
    else:
        ratio = fuzz.token_set_ratio(left_key, right_key)
    return round(ratio / 100.0, SCORE_PRECISION)


def structural_compatibility(left: PersonRecord, right: PersonRecord) -> float:
    """1 = same department, 0.5 = one side has none, 0 = both present and differ."""
    if not left.department or not right.department:
        return 0.5
    return 1.0 if department_key(left.department) == department_key(right.department) else 0.0


def role_set(record: PersonRecord) -> FrozenSet[str]:
    roles = set()
    if record.is_leadership:
        roles.add('leadership')
    if record.is_manager:
        roles.add('manager')
    return frozenset(roles or {'contributor'})


class PairScorer:
    """Scores record pairs using one immutable EngineConfig."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._synonyms = self.config.title_synonyms

    def canonical_title(self, title: str) -> FrozenSet[str]:
        """Title tokens after synonym expansion, without stopwords."""
        tokens = expand_synonyms(title_tokens(title), self._synonyms)
        return frozenset(t for t in tokens if t not in TITLE_STOPWORDS)

    def title_similarity(self, left: PersonRecord, right: PersonRecord) -> float:
        """
        Synonym-aware title overlap combined with classified-role overlap.

        0.7 * Jaccard(canonical title tokens) + 0.3 * (1 if role sets intersect)
        """
        left_tokens = self.canonical_title(left.title)
        right_tokens = self.canonical_title(right.title)
        if left_tokens and right_tokens:
            overlap = len(left_tokens & right_tokens) / len(left_tokens | right_tokens)
        else:
            overlap = 0.0
        role_overlap = 1.0 if role_set(left) & role_set(right) else 0.0
        return round(
            TITLE_TOKEN_WEIGHT * overlap + TITLE_ROLE_WEIGHT * role_overlap,
            SCORE_PRECISION,
        )

    def score(self, left: PersonRecord, right: PersonRecord) -> PairScore:
        name = name_similarity(left.normalized_name_key, right.normalized_name_key)
        title = self.title_similarity(left, right)
        structure = structural_compatibility(left, right)
        total = NAME_WEIGHT * name + TITLE_WEIGHT * title + STRUCTURE_WEIGHT * structure
        return PairScore(
            left=left.key,
            right=right.key,
            name_similarity=name,
            title_similarity=title,
            structural_compatibility=structure,
            score=round(total, SCORE_PRECISION),
        )
