"""
Identity Engine: Name Normalization Utility
===========================================
Deterministic folding of person names and job titles for blocking and
cross-system matching.

The same input always yields the same output; the resolver's
reproducibility depends on it.
"""

import re
import unicodedata
from typing import Iterable, List, Optional, Tuple

from orglens.config import DEFAULT_HONORIFICS

# Characters replaced by a space before tokenizing
PUNCTUATION_CHARS = r'[.,\-/\\()&\'\"#@!?:;*+=\[\]{}|<>~`$%^_]'


def _fold(text: str) -> str:
    """Case-fold, strip accents and punctuation, collapse whitespace."""
    text = unicodedata.normalize('NFKD', text)
    text = ''.join(char for char in text if not unicodedata.combining(char))
    text = text.casefold()
    text = re.sub(PUNCTUATION_CHARS, ' ', text)
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def normalize_person_name(
    raw_name: Optional[str],
    honorifics: Iterable[str] = DEFAULT_HONORIFICS,
) -> str:
    """
    Normalize a person name into the key used for blocking and matching.

    Transformations applied:
    1. Unicode normalization (NFKD) and accent removal
    2. Case-fold
    3. Remove punctuation characters
    4. Collapse multiple spaces
    5. Drop honorific / suffix tokens (Dr, Mrs, Jr, PhD, ...)

    Args:
        raw_name: The raw person name
        honorifics: Lower-case tokens to strip wherever they appear

    Returns:
        Normalized key; empty string if nothing is left

    Examples:
        >>> normalize_person_name("Dr. Sarah  Johnson")
        'sarah johnson'

        >>> normalize_person_name("JOSÉ O'NEIL, Jr.")
        'jose o neil'

        >>> normalize_person_name("Mr.")
        ''
    """
    if raw_name is None:
        return ''

    name = _fold(str(raw_name))
    if not name:
        return ''

    stripped = {h.casefold() for h in honorifics}
    tokens = [t for t in name.split(' ') if t not in stripped]
    return ' '.join(tokens)


def title_tokens(raw_title: Optional[str]) -> Tuple[str, ...]:
    """
    Fold a job title into tokens.

    Examples:
        >>> title_tokens("Sr. Marketing-Manager")
        ('sr', 'marketing', 'manager')
    """
    if not raw_title:
        return ()
    folded = _fold(str(raw_title))
    return tuple(folded.split(' ')) if folded else ()


def contains_phrase(tokens: Tuple[str, ...], phrase) -> bool:
    """True if the phrase (text or pre-folded tokens) appears as a contiguous token run."""
    needle = phrase if isinstance(phrase, tuple) else title_tokens(phrase)
    if not needle or len(needle) > len(tokens):
        return False
    width = len(needle)
    return any(tokens[i:i + width] == needle for i in range(len(tokens) - width + 1))


def expand_synonyms(tokens: Iterable[str], synonyms) -> List[str]:
    """Replace each token by its synonym expansion (which may be several tokens)."""
    expanded: List[str] = []
    for token in tokens:
        replacement = synonyms.get(token)
        if replacement:
            expanded.extend(replacement.split())
        else:
            expanded.append(token)
    return expanded
