from __future__ import annotations
from math import sqrt

# z for a two-tailed 95% confidence interval
Z = 1.96

# A super vote counts as this many ordinary votes
SUPER_VOTE_WEIGHT = 3


def wilson_score(upvotes: int, total_votes: int, super_votes: int = 0) -> float:
    """
    Lower bound of the Wilson score interval for the share of positive votes.

    Super votes are already counted once in `upvotes` and `total_votes`; each
    one adds (SUPER_VOTE_WEIGHT - 1) extra trials that are all successes, so a
    super vote weighs 3x while p-hat stays a valid proportion.

    Small samples get wide intervals and therefore low scores, so a 10/10
    submission outranks a 1/1 submission.

    Raises ValueError on negative or inconsistent counts.

    Examples:
        >>> wilson_score(0, 0)
        0.0
        >>> round(wilson_score(10, 10), 4)
        0.7225
    """
    if upvotes < 0 or total_votes < 0 or super_votes < 0:
        raise ValueError(f"vote counts must be non-negative: up={upvotes} total={total_votes} super={super_votes}")
    if upvotes > total_votes:
        raise ValueError(f"upvotes ({upvotes}) exceed total votes ({total_votes})")
    if super_votes > upvotes:
        raise ValueError(f"super votes ({super_votes}) exceed upvotes ({upvotes})")

    extra = super_votes * (SUPER_VOTE_WEIGHT - 1)
    p = upvotes + extra
    n = total_votes + extra
    if n == 0:
        return 0.0

    phat = p / n
    z2 = Z * Z
    numerator = phat + z2 / (2 * n) - Z * sqrt(phat * (1 - phat) / n + z2 / (4 * n * n))
    denominator = 1 + z2 / n
    # Clamp float noise at the edges
    return max(0.0, min(1.0, numerator / denominator))
