"""Fuzzy subsequence scorer shared by sources, the dispatcher and aliases."""

from typing import List, Optional

from .models import MatchResult


FIRST_CHAR_BONUS = 15
WORD_BOUNDARY_BONUS = 10
CONSECUTIVE_BONUS = 5
PLAIN_MATCH_BONUS = 1
MAX_GAP_PENALTY = 3
LENGTH_BONUS_BASE = 50
MAX_LENGTH_BONUS = 10


def _fold(text: str) -> str:
    # Per-character lowercasing keeps indexes aligned with the original text
    # (str.lower() expands a few code points such as "İ" to two characters).
    return "".join(c.lower()[0] for c in text)


def is_word_boundary(text: str, index: int) -> bool:
    """
    Check whether the character at `index` starts a word.

    Boundaries are: after a non-alphanumeric character, a camelCase
    transition, and digit/letter transitions in either direction.
    """
    if index == 0:
        return True

    prev = text[index - 1]
    curr = text[index]
    return (
        not prev.isalnum()
        or (prev.islower() and curr.isupper())
        or (prev.isdigit() and curr.isalpha())
        or (prev.isalpha() and curr.isdigit())
    )


def match(query: str, target: str) -> Optional[MatchResult]:
    """
    Match `query` as a case-insensitive subsequence of `target`.

    The scan is a single greedy left-to-right pass: each query character is
    consumed at its first occurrence after the previous match, so repeated
    characters always resolve to the earliest position.

    Scoring per matched character (first rule that applies):
        first character of target    +15
        word boundary                +10
        consecutive with last match  +5
        anything else                +1
    Non-consecutive matches lose min(gap, 3). Shorter targets get up to
    +10 via clamp(50 - len(target), 0, 10).

    Args:
        query: Text typed by the user
        target: Text to match against

    Returns:
        MatchResult, or None when the query is not a subsequence of target
    """
    if not query:
        return MatchResult(score=0, matched_positions=())
    if not target:
        return None

    query_lower = _fold(query)
    target_lower = _fold(target)

    query_idx = 0
    score = 0
    prev_match = -1
    positions: List[int] = []

    for target_idx, char in enumerate(target_lower):
        if query_idx >= len(query_lower):
            break
        if char != query_lower[query_idx]:
            continue

        consecutive = prev_match != -1 and target_idx == prev_match + 1

        if target_idx == 0:
            score += FIRST_CHAR_BONUS
        elif is_word_boundary(target, target_idx):
            score += WORD_BOUNDARY_BONUS
        elif consecutive:
            score += CONSECUTIVE_BONUS
        else:
            score += PLAIN_MATCH_BONUS

        if prev_match != -1 and not consecutive:
            score -= min(target_idx - prev_match - 1, MAX_GAP_PENALTY)

        positions.append(target_idx)
        prev_match = target_idx
        query_idx += 1

    if query_idx < len(query_lower):
        return None

    length_bonus = max(0, min(LENGTH_BONUS_BASE - len(target), MAX_LENGTH_BONUS))
    return MatchResult(score=score + length_bonus, matched_positions=tuple(positions))
