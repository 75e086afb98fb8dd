from typing import Optional

POOR_RATINGS = frozenset({"E", "F", "G"})

POOR_RATING_POINTS = 50
MAINS_GAS_POINTS = 30
BORDERLINE_RATING_POINTS = 20


def score_property(rating: Optional[str], fuel: Optional[str]) -> int:
    """
    Lead score for a single certificate.

    - rating E/F/G  -> +50
    - fuel mentions "mains gas" (any case) -> +30
    - rating D      -> +20

    Rules are independent and additive; ratings are exclusive so the highest
    reachable score is 80.
    """
    score = 0
    if rating in POOR_RATINGS:
        score += POOR_RATING_POINTS
    if fuel and "mains gas" in fuel.lower():
        score += MAINS_GAS_POINTS
    if rating == "D":
        score += BORDERLINE_RATING_POINTS
    return score
