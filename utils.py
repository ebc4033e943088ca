"""
Utility Functions for the Daily Food Cost Worksheet

This file contains helper functions used across the application:
- Display formatting (currency, numbers, percentages)
- Entry form drafts (string fields <-> line item input)

Formulas go in calculations.py, configuration in config.py
"""

import uuid
from typing import Dict, Optional

from config import CURRENCY, INPUT_PRECISION, NUMERIC_INPUT_FIELDS, THRESHOLDS
from calculations import coerce_number


# =============================================================================
# FORMATTING
# =============================================================================

def format_currency(amount: Optional[float], currency: str = CURRENCY['symbol'],
                    decimals: int = CURRENCY['decimals']) -> str:
    """
    Format amount as currency string.

    Args:
        amount: Numeric amount
        currency: Currency symbol (default JD)
        decimals: Decimal places (default 3 - Jordanian dinar has 1000 fils)

    Returns:
        Formatted string like "JD 1,234.500"
    """
    value = coerce_number(amount)
    sign = '-' if value < 0 else ''
    return f"{sign}{currency} {abs(value):,.{decimals}f}"


def format_number(value: Optional[float], decimals: int = INPUT_PRECISION) -> str:
    """Thousands-separated number with fixed decimals"""
    return f"{coerce_number(value):,.{decimals}f}"


def format_percentage(value: Optional[float], decimals: int = 1) -> str:
    """
    Format value as percentage string.

    Args:
        value: Percentage value (40.0 for 40%)
        decimals: Number of decimal places

    Returns:
        Formatted string like "40.0%"
    """
    return f"{coerce_number(value):.{decimals}f}%"


def food_cost_status(food_cost_pct: Optional[float]) -> str:
    """Classify a food cost % as 'ok', 'warning' or 'critical'"""
    pct = coerce_number(food_cost_pct)

    if pct >= THRESHOLDS['food_cost_critical']:
        return 'critical'
    if pct >= THRESHOLDS['food_cost_warning']:
        return 'warning'
    return 'ok'


# =============================================================================
# ENTRY FORM DRAFTS
# A draft holds the form fields as strings, exactly as typed
# =============================================================================

def new_item_id() -> str:
    return str(uuid.uuid4())


def create_empty_draft() -> Dict[str, str]:
    """Blank draft with a fresh id"""
    draft = {'id': new_item_id(), 'category': '', 'menu_item': ''}
    draft.update({field: '' for field in NUMERIC_INPUT_FIELDS})
    return draft


def item_to_draft(item: Dict) -> Dict[str, str]:
    """Load a stored line item into the form (numbers become text)"""
    draft = {
        'id': str(item.get('id') or new_item_id()),
        'category': str(item.get('category') or ''),
        'menu_item': str(item.get('menu_item') or ''),
    }
    for field in NUMERIC_INPUT_FIELDS:
        value = item.get(field)
        draft[field] = '' if value is None else str(value)
    return draft


def parse_numeric(value) -> float:
    """Coerce typed text to a number rounded to INPUT_PRECISION places"""
    return round(coerce_number(value), INPUT_PRECISION)


def draft_to_input(draft: Dict) -> Dict:
    """
    Convert a form draft into a line item input.

    Labels are trimmed, numbers parsed and rounded to 3 decimals.
    Unparsable numbers become 0. A missing id gets a new one.
    """
    item = {
        'id': draft.get('id') or new_item_id(),
        'category': str(draft.get('category') or '').strip(),
        'menu_item': str(draft.get('menu_item') or '').strip(),
    }
    for field in NUMERIC_INPUT_FIELDS:
        item[field] = parse_numeric(draft.get(field))
    return item
