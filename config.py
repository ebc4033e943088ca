"""
Configuration for the Daily Food Cost Worksheet

This file contains ONLY static configuration that rarely changes:
- Calculation profile and day defaults
- Food cost thresholds
- CSV import/export column layouts
- Database table names and live refresh settings

NO CREDENTIALS HERE - Supabase keys come from .streamlit/secrets.toml
NO CALCULATIONS HERE - formulas go in calculations.py
"""

# =============================================================================
# CALCULATION PROFILE
#
# Two variance policies exist for the same worksheet:
#   'pos_cost'      - recipe food cost vs. food cost recorded by the POS
#                     (variance against POS-recorded cost)
#   'implied_sales' - sales vs. computed line cost
#                     (variance against implied sales)
# =============================================================================
PROFILE_POS_COST = 'pos_cost'
PROFILE_IMPLIED_SALES = 'implied_sales'

PROFILES = (PROFILE_POS_COST, PROFILE_IMPLIED_SALES)

CALCULATION_PROFILE = PROFILE_POS_COST

# Per-day settings stored next to the day summary
DEFAULT_SETTINGS = {
    'use_implied_sales_when_blank': False,
}

# Decimal places for user-entered numbers (the engine itself never rounds)
INPUT_PRECISION = 3

CURRENCY = {
    'symbol': 'JD',
    'code': 'JOD',
    'decimals': 3,
}

# =============================================================================
# ANALYSIS THRESHOLDS
# =============================================================================
THRESHOLDS = {
    'food_cost_target': 30,      # % - Target food cost ratio
    'food_cost_warning': 35,     # % - Warning threshold
    'food_cost_critical': 40,    # % - Critical threshold
    'variance_warning': 5,       # percentage points between recipe and day cost
}

# =============================================================================
# CSV IMPORT / EXPORT
# Import files list columns in exactly this order (header row optional)
# =============================================================================
CSV_HEADERS = [
    'Category',
    'Menu Item',
    'Qty Nos.',
    'Unit Cost (JD)',
    'Unit Price (JD)',
    'Cost on POS (JD)',
    'Total Sales (JD)',
]

# Record key for each import column, same order as CSV_HEADERS
CSV_FIELDS = [
    'category',
    'menu_item',
    'qty_nos',
    'unit_cost_jd',
    'unit_price_jd',
    'cost_on_pos_jd',
    'total_sales_jd',
]

NUMERIC_INPUT_FIELDS = (
    'qty_nos',
    'unit_cost_jd',
    'unit_price_jd',
    'cost_on_pos_jd',
    'total_sales_jd',
)

EXPORT_COLUMNS = {
    PROFILE_POS_COST: [
        ('Category', 'category'),
        ('Menu Item', 'menu_item'),
        ('Qty Nos.', 'qty_nos'),
        ('Unit Cost (JD)', 'unit_cost_jd'),
        ('Unit Price (JD)', 'unit_price_jd'),
        ('Cost on POS (JD)', 'cost_on_pos_jd'),
        ('Total Sales (JD)', 'total_sales_jd'),
        ('Total Cost (JD)', 'total_cost_jd'),
        ('Cost Variance (JD)', 'cost_variance_jd'),
        ('Day Food Cost (%)', 'day_food_cost_pct'),
        ('Recipe Food Cost (%)', 'recipe_food_cost_pct'),
        ('Variance (%)', 'variance_pct'),
        ('Total Variance (JD)', 'total_variance_jd'),
    ],
    PROFILE_IMPLIED_SALES: [
        ('Category', 'category'),
        ('Menu Item', 'menu_item'),
        ('Qty Nos.', 'qty_nos'),
        ('Unit Cost (JD)', 'unit_cost_jd'),
        ('Unit Price (JD)', 'unit_price_jd'),
        ('Cost on POS (JD)', 'cost_on_pos_jd'),
        ('Total Sales (JD)', 'total_sales_jd'),
        ('Implied Sales (JD)', 'implied_sales_jd'),
        ('Line Cost (JD)', 'line_cost_jd'),
        ('Variance (JD)', 'variance_value_jd'),
        ('Variance (%)', 'variance_pct'),
    ],
}

# Grid columns shown on the worksheet (label, record key, kind)
DISPLAY_COLUMNS = {
    PROFILE_POS_COST: [
        ('Category', 'category', 'text'),
        ('Menu Item', 'menu_item', 'text'),
        ('Qty', 'qty_nos', 'number'),
        ('Unit Cost', 'unit_cost_jd', 'currency'),
        ('Unit Price', 'unit_price_jd', 'currency'),
        ('Cost on POS', 'cost_on_pos_jd', 'currency'),
        ('Total Sales', 'total_sales_jd', 'currency'),
        ('Total Cost', 'total_cost_jd', 'currency'),
        ('Cost Variance', 'cost_variance_jd', 'currency'),
        ('Day FC %', 'day_food_cost_pct', 'percent'),
        ('Recipe FC %', 'recipe_food_cost_pct', 'percent'),
        ('Variance %', 'variance_pct', 'percent'),
        ('Total Variance', 'total_variance_jd', 'currency'),
    ],
    PROFILE_IMPLIED_SALES: [
        ('Category', 'category', 'text'),
        ('Menu Item', 'menu_item', 'text'),
        ('Qty', 'qty_nos', 'number'),
        ('Unit Cost', 'unit_cost_jd', 'currency'),
        ('Unit Price', 'unit_price_jd', 'currency'),
        ('Total Sales', 'total_sales_jd', 'currency'),
        ('Line Cost', 'line_cost_jd', 'currency'),
        ('Variance', 'variance_value_jd', 'currency'),
        ('Variance %', 'variance_pct', 'percent'),
    ],
}

# =============================================================================
# DATABASE (Supabase)
# =============================================================================
TABLES = {
    'restaurants': 'restaurants',
    'days': 'days',
    'line_items': 'line_items',
}

# Columns written to the line_items table (union of both profiles)
LINE_ITEM_COLUMNS = [
    'id',
    'category',
    'menu_item',
    'qty_nos',
    'unit_cost_jd',
    'unit_price_jd',
    'cost_on_pos_jd',
    'total_sales_jd',
    'implied_sales_jd',
    'total_cost_jd',
    'cost_variance_jd',
    'day_food_cost_pct',
    'recipe_food_cost_pct',
    'variance_pct',
    'total_variance_jd',
    'line_cost_jd',
    'variance_value_jd',
]

PAGE_SIZE = 1000
RECENT_DAYS_LIMIT = 30

# Seconds between live refreshes of the open day (UI fragment and pollers)
REFRESH_INTERVAL_SECONDS = 5
