import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

# =============================================================================
# IRS CONTRIBUTION LIMITS (2026 TAX YEAR)
# =============================================================================

@dataclass(frozen=True)
class SuperCatchUpTier:
    """Elevated catch-up allowance for a narrow age band (SECURE 2.0)."""
    limit: float
    age_min: int
    age_max: int

    def applies(self, age: float) -> bool:
        return self.age_min <= age <= self.age_max

@dataclass(frozen=True)
class ContributionLimit:
    """Static limits for one account category."""
    standard: float
    catch_up: float
    catch_up_age: int
    annual_increase: float      # Assumed linear yearly IRS increase
    super_tier: Optional[SuperCatchUpTier] = None

IRS_LIMITS: Dict[str, ContributionLimit] = {
    "deferred": ContributionLimit(
        standard=24500,
        catch_up=8000,          # Age 50-59, 64+
        catch_up_age=50,
        annual_increase=500,
        super_tier=SuperCatchUpTier(limit=11250, age_min=60, age_max=63),
    ),
    "tax_free": ContributionLimit(
        standard=7500,
        catch_up=1100,          # Age 50+
        catch_up_age=50,
        annual_increase=500,
    ),
    "medical": ContributionLimit(
        standard=8750,          # Family coverage
        catch_up=1000,          # Age 55+
        catch_up_age=55,
        annual_increase=500,
    ),
}

# =============================================================================
# LIMIT ENGINE
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

def _catch_up_ceiling(limits: ContributionLimit, age: float) -> float:
    """Static catch-up ceiling for the tier the age falls in."""
    if limits.super_tier is not None and limits.super_tier.applies(age):
        return limits.super_tier.limit
    return limits.catch_up

def projected_limit(category: str, years_elapsed: int, age: float) -> Tuple[float, float]:
    """
    Inflation-projected (standard, catch-up) ceilings for a category.

    The standard limit grows by `annual_increase` each elapsed year. Catch-up
    tiers grow by the same increase scaled to their share of the standard
    limit, rounded to whole dollars. No catch-up below the category's own
    catch-up age.
    """
    limits = IRS_LIMITS[category]
    standard = limits.standard + limits.annual_increase * years_elapsed

    if age < limits.catch_up_age:
        return standard, 0.0

    base = _catch_up_ceiling(limits, age)
    yearly_step = _round_half_up(base / limits.standard * limits.annual_increase)
    return standard, base + yearly_step * years_elapsed

def irs_max_contribution(category: str, years_elapsed: int, age: float) -> float:
    """Total allowable contribution (standard + catch-up) for display as headroom."""
    standard, catch_up = projected_limit(category, years_elapsed, age)
    return standard + catch_up

def clamp_catch_up(requested: float, category: str, age: float) -> float:
    """
    Cap a declared catch-up amount at the ceiling for the age's tier.
    Age eligibility is not checked here; callers gate on `catch_up_age`.
    """
    return min(requested, _catch_up_ceiling(IRS_LIMITS[category], age))

def max_declared_catch_up(category: str) -> float:
    """Largest catch-up a user may declare for a category at any age."""
    limits = IRS_LIMITS[category]
    if limits.super_tier is not None:
        return max(limits.catch_up, limits.super_tier.limit)
    return limits.catch_up
