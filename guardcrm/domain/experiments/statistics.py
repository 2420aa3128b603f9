"""
A/B test statistics: deterministic visitor bucketing, confidence intervals,
two-proportion z-test and recommendations. No I/O.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

TRAFFIC_TOLERANCE = 0.01
MIN_SAMPLES_PER_ARM = 30


class ExperimentError(Exception):
    """Invalid experiment definition or state"""


@dataclass
class VariantStats:
    variant_id: int
    name: str
    visitors: int
    conversions: int
    is_control: bool = False
    conversion_rate: float = 0.0
    confidence_interval: tuple = (0.0, 0.0)
    lift: float = 0.0


@dataclass
class SignificanceResult:
    is_significant: bool
    p_value: float
    z_score: float = 0.0


@dataclass
class ExperimentAnalysis:
    variants: list[VariantStats]
    total_visitors: int
    total_conversions: int
    significance: SignificanceResult
    best_variant: Optional[VariantStats]
    recommendation: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalVisitors": self.total_visitors,
            "totalConversions": self.total_conversions,
            "isSignificant": self.significance.is_significant,
            "pValue": self.significance.p_value,
            "zScore": self.significance.z_score,
            "bestVariantId": self.best_variant.variant_id if self.best_variant else None,
            "recommendation": self.recommendation,
            "variants": [
                {
                    "variantId": v.variant_id,
                    "name": v.name,
                    "isControl": v.is_control,
                    "visitors": v.visitors,
                    "conversions": v.conversions,
                    "conversionRate": round(v.conversion_rate, 6),
                    "confidenceInterval": [round(v.confidence_interval[0], 6), round(v.confidence_interval[1], 6)],
                    "lift": round(v.lift, 4),
                }
                for v in self.variants
            ],
        }


def validate_traffic_split(percentages: list[float]) -> None:
    total = sum(percentages)
    if abs(total - 100) > TRAFFIC_TOLERANCE:
        raise ExperimentError(f"Traffic percentages must sum to 100 (got {total:g})")
    if any(p < 0 for p in percentages):
        raise ExperimentError("Traffic percentages cannot be negative")


def string_hash(value: str) -> int:
    """32-bit string hash (h = h*31 + code, wrapped to signed 32 bits), returned as its absolute value"""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def assign_bucket(visitor_id: str) -> int:
    """Bucket in 1..100 for a visitor"""
    return string_hash(visitor_id) % 100 + 1


def pick_variant(visitor_id: str, variants: list) -> object:
    """
    Walk variants in order by cumulative traffic percentage. Variants expose
    `traffic_percentage`; the first variant is the fallback.
    """
    if not variants:
        raise ExperimentError("Test has no variants")
    bucket = assign_bucket(visitor_id)
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.traffic_percentage
        if bucket <= cumulative:
            return variant
    return variants[0]


def conversion_rate(conversions: int, visitors: int) -> float:
    return conversions / visitors if visitors > 0 else 0.0


def confidence_interval(rate: float, visitors: int, confidence_level: float = 0.95) -> tuple:
    """Wald interval clamped to [0, 1]; z is 1.96 at 95% and 2.58 otherwise"""
    if visitors <= 0:
        return (0.0, 0.0)
    z = 1.96 if confidence_level == 0.95 else 2.58
    margin = z * math.sqrt(rate * (1 - rate) / visitors)
    return (max(0.0, rate - margin), min(1.0, rate + margin))


def _erf(x: float) -> float:
    # Abramowitz and Stegun formula 7.1.26
    a1, a2, a3, a4, a5 = 0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429
    p = 0.3275911
    sign = 1 if x >= 0 else -1
    x = abs(x)
    t = 1.0 / (1.0 + p * x)
    y = 1.0 - (((((a5 * t + a4) * t) + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return sign * y


def normal_cdf(x: float) -> float:
    return 0.5 * (1 + _erf(x / math.sqrt(2)))


def two_proportion_test(
    control_conversions: int,
    control_visitors: int,
    variant_conversions: int,
    variant_visitors: int,
    alpha: float = 0.05,
) -> SignificanceResult:
    """Pooled two-proportion z-test; undersized arms or zero variance give p = 1"""
    if control_visitors < MIN_SAMPLES_PER_ARM or variant_visitors < MIN_SAMPLES_PER_ARM:
        return SignificanceResult(is_significant=False, p_value=1.0)

    p1 = control_conversions / control_visitors
    p2 = variant_conversions / variant_visitors
    pooled = (control_conversions + variant_conversions) / (control_visitors + variant_visitors)
    se = math.sqrt(pooled * (1 - pooled) * (1 / control_visitors + 1 / variant_visitors))
    if se == 0:
        return SignificanceResult(is_significant=False, p_value=1.0)

    z = (p2 - p1) / se
    p_value = 2 * (1 - normal_cdf(abs(z)))
    p_value = min(1.0, max(0.0, p_value))
    return SignificanceResult(is_significant=p_value < alpha, p_value=p_value, z_score=z)


def lift(variant_rate: float, control_rate: float) -> float:
    """Relative lift in percent against the control"""
    if control_rate == 0:
        return 0.0
    return (variant_rate - control_rate) / control_rate * 100


def recommend(
    total_visitors: int,
    significance: SignificanceResult,
    best: Optional[VariantStats],
    minimum_sample_size: int,
    minimum_effect_size: float,
) -> dict:
    if total_visitors < minimum_sample_size:
        return {
            "action": "continue_testing",
            "reason": f"Need {minimum_sample_size - total_visitors} more visitors to reach minimum sample size",
        }
    if not significance.is_significant or best is None:
        return {"action": "inconclusive", "reason": "No statistically significant difference detected"}
    if best.lift >= minimum_effect_size:
        return {
            "action": "implement_winner",
            "reason": f"{best.name} shows {best.lift:.1f}% lift",
            "winnerVariantId": best.variant_id,
            "expectedImpact": round(best.lift, 2),
        }
    if best.lift < 0:
        return {"action": "redesign", "reason": "All variants perform worse than control"}
    return {
        "action": "continue_testing",
        "reason": f"Effect size {best.lift:.1f}% is below the {minimum_effect_size:g}% minimum",
    }


def analyze(
    variants: list[dict],
    confidence_level: float = 95,
    minimum_sample_size: int = 100,
    minimum_effect_size: float = 5,
) -> ExperimentAnalysis:
    """
    Analyze variant counts. Each dict has id, name, visitors, conversions and
    is_control; when no variant is flagged the first one is the control.
    """
    if not variants:
        raise ExperimentError("Test has no variants")

    level = confidence_level / 100
    stats = []
    for v in variants:
        rate = conversion_rate(v["conversions"], v["visitors"])
        stats.append(
            VariantStats(
                variant_id=v["id"],
                name=v["name"],
                visitors=v["visitors"],
                conversions=v["conversions"],
                is_control=bool(v.get("is_control")),
                conversion_rate=rate,
                confidence_interval=confidence_interval(rate, v["visitors"], level),
            )
        )

    control = next((s for s in stats if s.is_control), stats[0])
    control.is_control = True
    for s in stats:
        s.lift = 0.0 if s is control else lift(s.conversion_rate, control.conversion_rate)

    challengers = [s for s in stats if s is not control]
    best = max(challengers, key=lambda s: s.conversion_rate) if challengers else None

    if best is None:
        significance = SignificanceResult(is_significant=False, p_value=1.0)
    else:
        significance = two_proportion_test(
            control.conversions, control.visitors, best.conversions, best.visitors, alpha=1 - level
        )

    total_visitors = sum(s.visitors for s in stats)
    total_conversions = sum(s.conversions for s in stats)

    return ExperimentAnalysis(
        variants=stats,
        total_visitors=total_visitors,
        total_conversions=total_conversions,
        significance=significance,
        best_variant=best,
        recommendation=recommend(
            total_visitors, significance, best, minimum_sample_size, minimum_effect_size
        ),
    )


def select_winner(analysis: ExperimentAnalysis) -> VariantStats:
    """Best variant when significant, otherwise the control"""
    control = next(s for s in analysis.variants if s.is_control)
    if analysis.significance.is_significant and analysis.best_variant is not None:
        if analysis.best_variant.conversion_rate > control.conversion_rate:
            return analysis.best_variant
    return control
