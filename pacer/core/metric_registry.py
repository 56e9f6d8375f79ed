"""PACER — Insight Metric Registry.

Defines the raw metrics stored per (entity, day) and the rates derived
from them. Every derived rate is guarded against a zero denominator and
returns 0.0 instead of NaN/Infinity.
"""

from typing import Callable, Dict, Optional

Formula = Callable[[float, float, float, float], float]


class MetricDefinition:
    """Describes a single metric.

    `additive` raw metrics are summed when rows for the same day are
    merged; the others keep the largest value. Derived metrics carry the
    formula that recomputes them from (spend, impressions, clicks, leads).
    """

    def __init__(
        self,
        name: str,
        unit: str = "",
        description: str = "",
        additive: bool = True,
        formula: Optional[Formula] = None,
    ):
        self.name = name
        self.unit = unit
        self.description = description
        self.additive = additive
        self.formula = formula

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({'derived' if self.formula else 'raw'})>"


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * scale


# ─────────────────────────────────────────────
# RAW METRICS — stored as reported by Meta
# ─────────────────────────────────────────────

RAW_METRICS: Dict[str, MetricDefinition] = {
    "spend": MetricDefinition("spend", "currency", "Amount spent"),
    "impressions": MetricDefinition("impressions", "count", "Times the ad was shown"),
    "clicks": MetricDefinition("clicks", "count", "Total clicks"),
    # Unique users; two partial rows for one day overlap.
    "reach": MetricDefinition(
        "reach", "count", "Unique users who saw the ad", additive=False
    ),
    "leads": MetricDefinition("leads", "count", "Lead form submissions"),
}


# ─────────────────────────────────────────────
# DERIVED METRICS — recomputed from raw values
# ─────────────────────────────────────────────

DERIVED_METRICS: Dict[str, MetricDefinition] = {
    "ctr": MetricDefinition(
        "ctr", "%", "Clicks / Impressions",
        formula=lambda spend, impressions, clicks, leads: _ratio(clicks, impressions, 100),
    ),
    "cpm": MetricDefinition(
        "cpm", "currency", "Cost per 1000 impressions",
        formula=lambda spend, impressions, clicks, leads: _ratio(spend, impressions, 1000),
    ),
    "cpc": MetricDefinition(
        "cpc", "currency", "Cost per click",
        formula=lambda spend, impressions, clicks, leads: _ratio(spend, clicks),
    ),
    "cpl": MetricDefinition(
        "cpl", "currency", "Cost per lead",
        formula=lambda spend, impressions, clicks, leads: _ratio(spend, leads),
    ),
}

ALL_METRICS = {**RAW_METRICS, **DERIVED_METRICS}


def compute_derived(
    spend: float, impressions: float, clicks: float, leads: float
) -> Dict[str, float]:
    """Compute every derived rate, rounded to 4 places."""
    return {
        name: round(metric.formula(spend, impressions, clicks, leads), 4)
        for name, metric in DERIVED_METRICS.items()
    }
