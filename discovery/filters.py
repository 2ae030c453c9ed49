"""
DISCOVERY FILTERS

Thresholds a newly seen pool must pass before it is reported:
- LIQUIDITY: drop if liquidity < min_liquidity_usd (equal passes)
- AGE: drop if age is known and > max_age_seconds (equal passes)

A pool with unknown (or zero) age is never dropped on age.
"""

from typing import Dict, Optional, Tuple

from safe_math import safe_float


class DiscoveryFilter:
    """Liquidity / freshness gate for the new-token detector."""

    def __init__(self, min_liquidity_usd: float = 1000, max_age_seconds: int = 3600):
        self.min_liquidity_usd = min_liquidity_usd
        self.max_age_seconds = max_age_seconds

        # Stats
        self.stats = {
            'total_evaluated': 0,
            'low_liquidity': 0,
            'too_old': 0,
            'passed': 0,
        }

    def apply(self, pool: Dict) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            (passed, reason) - reason is None when the pool passes
        """
        self.stats['total_evaluated'] += 1

        liquidity = safe_float(pool.get('liquidity'))
        if liquidity < self.min_liquidity_usd:
            self.stats['low_liquidity'] += 1
            return False, f"LOW_LIQUIDITY (${liquidity:,.0f} < ${self.min_liquidity_usd:,.0f})"

        age_seconds = pool.get('ageSeconds')
        if age_seconds and age_seconds > self.max_age_seconds:
            self.stats['too_old'] += 1
            return False, f"TOO_OLD ({age_seconds}s > {self.max_age_seconds}s)"

        self.stats['passed'] += 1
        return True, None
