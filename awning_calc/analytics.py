"""
Historical pricing analytics over stored cost sheets.

Won jobs count WON_WEIGHT times in the "won" averages so the benchmark leans
toward prices that actually closed. Plain averages weight every job once.
"""
import math
from dataclasses import dataclass, asdict
from typing import Optional

from .pricing import to_number

WON_WEIGHT = 3
GUARDRAIL_TOLERANCE = 0.15

OUTCOME_WON = 'Won'
OUTCOME_LOST = 'Lost'
OUTCOME_UNKNOWN = 'Unknown'


@dataclass
class CategoryPricingStats:
    category: str
    count: int = 0
    won_count: int = 0
    lost_count: int = 0
    unknown_count: int = 0
    avg_price_per_sq_ft: Optional[float] = None
    avg_price_per_lin_ft: Optional[float] = None
    won_avg_price_per_sq_ft: Optional[float] = None
    won_avg_price_per_lin_ft: Optional[float] = None
    final_avg_price_per_sq_ft: Optional[float] = None
    final_avg_price_per_lin_ft: Optional[float] = None
    final_won_avg_price_per_sq_ft: Optional[float] = None
    final_won_avg_price_per_lin_ft: Optional[float] = None

    def to_dict(self):
        return asdict(self)


class _Accumulator:
    """Running plain and won-weighted sums for one metric."""

    def __init__(self):
        self.total = 0.0
        self.count = 0
        self.weighted_total = 0.0
        self.weighted_count = 0

    def add(self, price, weight):
        self.total += price
        self.count += 1
        self.weighted_total += price * weight
        self.weighted_count += weight

    @property
    def average(self):
        return self.total / self.count if self.count else None

    @property
    def weighted_average(self):
        return self.weighted_total / self.weighted_count if self.weighted_count else None


_METRICS = (
    'price_per_sq_ft_pre_delivery',
    'price_per_lin_ft_pre_delivery',
    'price_per_sq_ft',
    'price_per_lin_ft',
)


def _field(sheet, name):
    if isinstance(sheet, dict):
        return sheet.get(name)
    return getattr(sheet, name, None)


def _unit_price(value):
    """A usable unit price, or None when the sheet has none for this metric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        value = to_number(value)
    if not isinstance(value, (int, float)) or math.isnan(value) or value == 0:
        return None
    return float(value)


def build_category_stats(sheets, category=None):
    """
    Group sheets by category and average their unit prices.

    Returns a dict of category name -> CategoryPricingStats. Sheets with no
    category are skipped; a missing or zero unit price is skipped for that
    metric only.
    """
    counts = {}
    accumulators = {}

    for sheet in sheets:
        sheet_category = _field(sheet, 'category')
        if not isinstance(sheet_category, str) or not sheet_category:
            continue
        if category and sheet_category != category:
            continue

        stats = counts.get(sheet_category)
        if stats is None:
            stats = counts[sheet_category] = CategoryPricingStats(category=sheet_category)
            accumulators[sheet_category] = {metric: _Accumulator() for metric in _METRICS}

        outcome = _field(sheet, 'outcome')
        stats.count += 1
        if outcome == OUTCOME_WON:
            stats.won_count += 1
        elif outcome == OUTCOME_LOST:
            stats.lost_count += 1
        else:
            stats.unknown_count += 1

        weight = WON_WEIGHT if outcome == OUTCOME_WON else 1
        for metric, acc in accumulators[sheet_category].items():
            price = _unit_price(_field(sheet, metric))
            if price is not None:
                acc.add(price, weight)

    for name, stats in counts.items():
        acc = accumulators[name]
        stats.avg_price_per_sq_ft = acc['price_per_sq_ft_pre_delivery'].average
        stats.avg_price_per_lin_ft = acc['price_per_lin_ft_pre_delivery'].average
        stats.won_avg_price_per_sq_ft = acc['price_per_sq_ft_pre_delivery'].weighted_average
        stats.won_avg_price_per_lin_ft = acc['price_per_lin_ft_pre_delivery'].weighted_average
        stats.final_avg_price_per_sq_ft = acc['price_per_sq_ft'].average
        stats.final_avg_price_per_lin_ft = acc['price_per_lin_ft'].average
        stats.final_won_avg_price_per_sq_ft = acc['price_per_sq_ft'].weighted_average
        stats.final_won_avg_price_per_lin_ft = acc['price_per_lin_ft'].weighted_average

    return counts


def build_pricing_report(sheets, category=None):
    sheets = list(sheets)
    stats = build_category_stats(sheets, category)
    return {
        'by_category': [stats[name].to_dict() for name in sorted(stats)],
        'total_sheets': sum(s.count for s in stats.values()),
    }


# ----------------------------
# Guardrail & Quick Estimate
# ----------------------------
def price_guardrail(current_price, average_price, tolerance=GUARDRAIL_TOLERANCE):
    """
    Compare a quote's unit price with the category's weighted average.

    Returns a dict with 'status' (HIGH / LOW / GOOD / NO_DATA) and the signed
    percentage difference from the average.
    """
    current = _unit_price(current_price)
    average = _unit_price(average_price)
    if current is None or average is None:
        return {'status': 'NO_DATA', 'difference_pct': None, 'average': average}

    difference = (current - average) / average
    if difference > tolerance:
        status = 'HIGH'
    elif difference < -tolerance:
        status = 'LOW'
    else:
        status = 'GOOD'
    return {'status': status, 'difference_pct': round(difference * 100, 1), 'average': average}


def quick_estimate(stats, footage, mode='sqft', tolerance=GUARDRAIL_TOLERANCE):
    """Ballpark a price from footage and the category's won-weighted average."""
    if mode not in ('sqft', 'linft'):
        raise ValueError(f"Unknown estimate mode: {mode}")

    average = None
    if stats is not None:
        average = stats.won_avg_price_per_sq_ft if mode == 'sqft' else stats.won_avg_price_per_lin_ft

    footage = to_number(footage)
    if average is None:
        return {'mode': mode, 'footage': footage, 'average': None,
                'estimate': 0.0, 'low': 0.0, 'high': 0.0, 'has_data': False}

    estimate = footage * average
    return {
        'mode': mode,
        'footage': footage,
        'average': average,
        'estimate': estimate,
        'low': estimate * (1 - tolerance),
        'high': estimate * (1 + tolerance),
        'has_data': True,
    }
