"""
Food Cost Calculation Engine for the Daily Food Cost Worksheet

Pure functions only - no database, no Streamlit, no rounding.
- Per-item deriver: raw line item + day settings -> line item with cost/variance fields
- Daily aggregator: derived line items -> one daily summary

Every numeric field goes through coerce_number() before any arithmetic,
so bad input becomes 0 instead of NaN/Infinity or an exception.
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional

from config import (
    CALCULATION_PROFILE, DEFAULT_SETTINGS, NUMERIC_INPUT_FIELDS,
    PROFILE_IMPLIED_SALES, PROFILE_POS_COST, PROFILES
)

# Leading decimal literal, e.g. "12.5kg" -> "12.5", "-3e2x" -> "-3e2"
_NUMBER_PREFIX = re.compile(r'[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?')


# =============================================================================
# NUMERIC COERCION
# =============================================================================

def coerce_number(value: Any) -> float:
    """
    Convert any value to a finite float.

    Numbers pass through. Anything else is read as text and its leading
    number is used ("12abc" -> 12). None, booleans, blank or non-numeric
    text, NaN and Infinity all become 0.

    Args:
        value: Number, numeric string, None, or anything else

    Returns:
        Finite float (0.0 for invalid input)
    """
    if isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        try:
            num = float(value)
        except OverflowError:
            return 0.0
    else:
        text = str(value if value is not None else 0).strip()
        match = _NUMBER_PREFIX.match(text)
        if not match:
            return 0.0
        num = float(match.group())

    return num if math.isfinite(num) else 0.0


def _guarded_pct(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, or 0 when denominator is not positive"""
    return (numerator / denominator) * 100 if denominator > 0 else 0.0


def _check_profile(profile: str) -> None:
    if profile not in PROFILES:
        raise ValueError(f"Unknown calculation profile: {profile!r} (expected one of {PROFILES})")


def resolve_total_sales(total_sales_jd: Any, implied_sales_jd: Any,
                        settings: Optional[Dict] = None) -> float:
    """
    Pick the sales figure for a row.

    Recorded sales are used as-is, unless the day allows implied sales and the
    recorded value is exactly 0 - then quantity x price stands in for it.
    """
    settings = settings or DEFAULT_SETTINGS
    recorded = coerce_number(total_sales_jd)

    if settings.get('use_implied_sales_when_blank') and recorded == 0:
        return coerce_number(implied_sales_jd)

    return recorded


# =============================================================================
# PER-ITEM DERIVER
# =============================================================================

def _coerced_inputs(item: Dict) -> Dict[str, float]:
    return {field: coerce_number(item.get(field)) for field in NUMERIC_INPUT_FIELDS}


def _derive_pos_cost(item: Dict, settings: Dict) -> Dict:
    values = _coerced_inputs(item)
    qty = values['qty_nos']
    unit_cost = values['unit_cost_jd']
    unit_price = values['unit_price_jd']
    cost_on_pos = values['cost_on_pos_jd']

    total_cost = qty * unit_cost
    implied_sales = qty * unit_price
    total_sales = resolve_total_sales(values['total_sales_jd'], implied_sales, settings)

    day_food_cost = _guarded_pct(cost_on_pos, total_sales)
    recipe_food_cost = _guarded_pct(unit_cost, unit_price)
    # percentage points, recipe minus day
    variance_pct = recipe_food_cost - day_food_cost

    return {
        **item,
        **values,
        'total_sales_jd': total_sales,
        'implied_sales_jd': implied_sales,
        'total_cost_jd': total_cost,
        'cost_variance_jd': total_cost - cost_on_pos,
        'day_food_cost_pct': day_food_cost,
        'recipe_food_cost_pct': recipe_food_cost,
        'variance_pct': variance_pct,
        'total_variance_jd': total_cost * (variance_pct / 100),
    }


def _derive_implied_sales(item: Dict, settings: Dict) -> Dict:
    values = _coerced_inputs(item)
    qty = values['qty_nos']

    implied_sales = qty * values['unit_price_jd']
    total_sales = resolve_total_sales(values['total_sales_jd'], implied_sales, settings)
    line_cost = qty * values['unit_cost_jd']
    variance_value = total_sales - line_cost

    return {
        **item,
        **values,
        'total_sales_jd': total_sales,
        'implied_sales_jd': implied_sales,
        'line_cost_jd': line_cost,
        'variance_value_jd': variance_value,
        'variance_pct': _guarded_pct(variance_value, total_sales),
    }


_DERIVERS = {
    PROFILE_POS_COST: _derive_pos_cost,
    PROFILE_IMPLIED_SALES: _derive_implied_sales,
}


def derive_line_item(item: Dict, settings: Optional[Dict] = None,
                     profile: str = CALCULATION_PROFILE) -> Dict:
    """
    Enrich one raw line item with its derived cost and variance fields.

    The input dict is not modified. Labels (id, category, menu_item) and any
    other keys are carried over unchanged; numeric inputs come back coerced.

    Args:
        item: Raw line item (id, category, menu_item, qty_nos, unit_cost_jd,
              unit_price_jd, cost_on_pos_jd, total_sales_jd)
        settings: Day settings (defaults to DEFAULT_SETTINGS)
        profile: 'pos_cost' or 'implied_sales'

    Returns:
        New dict with input and derived fields
    """
    _check_profile(profile)
    return _DERIVERS[profile](item, {**DEFAULT_SETTINGS, **(settings or {})})


def derive_line_items(items: Iterable[Dict], settings: Optional[Dict] = None,
                      profile: str = CALCULATION_PROFILE) -> List[Dict]:
    """Derive every item in a list (order preserved)"""
    return [derive_line_item(item, settings, profile) for item in items]


# =============================================================================
# DAILY AGGREGATOR
# =============================================================================

def _summarize_pos_cost(items: Iterable[Dict]) -> Dict:
    total_cost = 0.0
    total_sales = 0.0
    total_cost_on_pos = 0.0
    total_variance = 0.0
    recipe_sales = 0.0

    for item in items:
        total_cost += coerce_number(item.get('total_cost_jd'))
        total_sales += coerce_number(item.get('total_sales_jd'))
        total_cost_on_pos += coerce_number(item.get('cost_on_pos_jd'))
        total_variance += coerce_number(item.get('total_variance_jd'))
        recipe_sales += coerce_number(item.get('qty_nos')) * coerce_number(item.get('unit_price_jd'))

    day_food_cost = _guarded_pct(total_cost_on_pos, total_sales)
    recipe_food_cost = _guarded_pct(total_cost, recipe_sales)

    return {
        'total_cost_jd': total_cost,
        'total_sales_jd': total_sales,
        'total_cost_on_pos_jd': total_cost_on_pos,
        'total_variance_jd': total_variance,
        'par_cst_jd': total_cost - total_cost_on_pos,
        'food_cost_pct': day_food_cost,
        'day_food_cost_pct': day_food_cost,
        'recipe_food_cost_pct': recipe_food_cost,
        'variance_pct': recipe_food_cost - day_food_cost,
        'updated_at': None,
    }


def _summarize_implied_sales(items: Iterable[Dict]) -> Dict:
    total_cost = 0.0
    total_sales = 0.0

    for item in items:
        total_cost += coerce_number(item.get('line_cost_jd'))
        total_sales += coerce_number(item.get('total_sales_jd'))

    return {
        'total_cost_jd': total_cost,
        'total_sales_jd': total_sales,
        'par_cst_jd': total_sales - total_cost,
        'food_cost_pct': _guarded_pct(total_cost, total_sales),
        'updated_at': None,
    }


_AGGREGATORS = {
    PROFILE_POS_COST: _summarize_pos_cost,
    PROFILE_IMPLIED_SALES: _summarize_implied_sales,
}


def aggregate_summary(items: Iterable[Dict], profile: str = CALCULATION_PROFILE) -> Dict:
    """
    Reduce a day's derived line items into one daily summary.

    Always recomputed from the full item set; order does not matter and an
    empty list gives an all-zero summary.

    Args:
        items: Line items produced by derive_line_item() with the same profile
        profile: 'pos_cost' or 'implied_sales'

    Returns:
        New summary dict (updated_at is None - set by the database layer)
    """
    _check_profile(profile)
    return _AGGREGATORS[profile](items)


def empty_summary(profile: str = CALCULATION_PROFILE) -> Dict:
    """All-zero summary for a day without items"""
    return aggregate_summary([], profile)
