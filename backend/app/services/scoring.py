"""
Upside scoring.

Additive heuristic on a base of 50 estimating how much investment upside a
retail property has from its vacancy, cap rate and price per square foot.
"""

import math
from typing import Optional

DEFAULT_MARKET_VACANCY_RATE = 10.0

BASE_SCORE = 50
VACANCY_FILL_BONUS = 20  # Vacancy in (5, 40): space to lease up
MAX_MARKET_DELTA_BONUS = 20
CAP_RATE_FLOOR = 7.0
MAX_CAP_RATE_BONUS = 15
VALUE_PRICE_PER_SQFT = 150.0
VALUE_BONUS = 10


def _number(value: Optional[float]) -> float:
    """Missing or NaN inputs count as zero."""
    if value is None:
        return 0.0
    value = float(value)
    if math.isnan(value):
        return 0.0
    return value


def calculate_upside_score(
    vacancy_rate: Optional[float],
    cap_rate: Optional[float],
    price_per_sqft: Optional[float],
    market_vacancy_rate: Optional[float] = DEFAULT_MARKET_VACANCY_RATE,
) -> int:
    """
    Score a property from 0 to 100.

    - +20 when vacancy is strictly between 5% and 40%
    - +2 per point the vacancy undercuts the market rate, capped at 20
    - +5 per cap rate point above 7%, capped at 15
    - +10 when price per sqft is positive and under $150

    Absent inputs are treated as 0; an absent market rate uses 10%.
    """
    vacancy = _number(vacancy_rate)
    cap = _number(cap_rate)
    ppsf = _number(price_per_sqft)
    market = _number(market_vacancy_rate) or DEFAULT_MARKET_VACANCY_RATE

    score = float(BASE_SCORE)

    if 5 < vacancy < 40:
        score += VACANCY_FILL_BONUS

    delta = market - vacancy
    if delta > 0:
        score += min(delta * 2, MAX_MARKET_DELTA_BONUS)

    if cap > CAP_RATE_FLOOR:
        score += min((cap - CAP_RATE_FLOOR) * 5, MAX_CAP_RATE_BONUS)

    if 0 < ppsf < VALUE_PRICE_PER_SQFT:
        score += VALUE_BONUS

    # Round half up, then clamp
    return int(min(max(math.floor(score + 0.5), 0), 100))


def score_property(prop, market_vacancy_rate: Optional[float] = DEFAULT_MARKET_VACANCY_RATE) -> int:
    """Compute and set upside_score on anything with vacancy_rate, cap_rate and price_per_sqft."""
    prop.upside_score = calculate_upside_score(
        prop.vacancy_rate,
        prop.cap_rate,
        prop.price_per_sqft,
        market_vacancy_rate,
    )
    return prop.upside_score
