"""
Snipe Score - heuristic 0-100 ranking for freshly discovered pools

Higher score = potentially better early-entry opportunity.

Scoring formula (base 50, clamped to [0, 100]):
- Age: +30 if < 5 min, +20 if < 30 min, +10 if < 1 h, -20 if > 1 day
- Liquidity: +15 if $10k-$100k, +5 if > $100k, -20 if < $1k
- Activity: +10 if > 100 txns (24h), +5 if > 50
- Momentum: +5 if 5m change > 10%, +5 if 1h change > 20%

A missing/zero age or a zero liquidity contributes nothing (neither bonus
nor penalty).
"""
from typing import Dict

from safe_math import safe_float, safe_int

BASE_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100


def calculate_snipe_score(pool: Dict) -> int:
    """
    Calculate the snipe score for a normalized pool. Pure, no I/O.

    Args:
        pool: Normalized pool dict (ageSeconds, liquidity, txns24h,
              priceChange5m, priceChange1h)

    Returns:
        int in [0, 100]
    """
    score = BASE_SCORE

    # 1. Age - newer is better
    age_seconds = pool.get('ageSeconds')
    if age_seconds:
        if age_seconds < 300:
            score += 30
        elif age_seconds < 1800:
            score += 20
        elif age_seconds < 3600:
            score += 10
        elif age_seconds > 86400:
            score -= 20

    # 2. Liquidity - decent depth matters, too thin is risky
    liquidity = safe_float(pool.get('liquidity'))
    if liquidity:
        if 10000 <= liquidity <= 100000:
            score += 15
        elif liquidity > 100000:
            score += 5
        elif liquidity < 1000:
            score -= 20

    # 3. Transaction activity
    txns = pool.get('txns24h') or {}
    total_txns = safe_int(txns.get('buys')) + safe_int(txns.get('sells'))
    if total_txns > 100:
        score += 10
    elif total_txns > 50:
        score += 5

    # 4. Price momentum
    if safe_float(pool.get('priceChange5m')) > 10:
        score += 5
    if safe_float(pool.get('priceChange1h')) > 20:
        score += 5

    return max(MIN_SCORE, min(MAX_SCORE, score))
