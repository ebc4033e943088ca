"""
Daily Food Cost Worksheet
Enter per-item sales and cost for a day; derived cost variance and the daily
food cost % are recomputed on every change and shared live across clients.
"""

import logging
from datetime import date

import streamlit as st
import pandas as pd

# Import our modules
from config import (
    CALCULATION_PROFILE, CSV_HEADERS, DISPLAY_COLUMNS, NUMERIC_INPUT_FIELDS,
    PROFILE_POS_COST, REFRESH_INTERVAL_SECONDS
)
from csv_io import parse_csv, export_csv, export_filename, read_uploaded_text
from utils import (
    format_currency, format_percentage, food_cost_status,
    create_empty_draft, item_to_draft, draft_to_input, new_item_id
)
from database import (
    init_supabase, ensure_session, get_data_summary,
    list_active_restaurants, create_restaurant, rename_restaurant, archive_restaurant,
    load_day, list_recent_days, upsert_item, import_items, delete_item, clear_day,
    save_settings
)

logger = logging.getLogger(__name__)

st.set_page_config(
    page_title="Daily Food Cost",
    page_icon="🍽️",
    layout="wide"
)

# Custom CSS
st.markdown("""
<style>
    .db-status-connected {
        padding: 10px;
        background: #d4edda;
        border-radius: 5px;
        color: #155724;
        text-align: center;
    }
    .db-status-disconnected {
        padding: 10px;
        background: #f8d7da;
        border-radius: 5px;
        color: #721c24;
        text-align: center;
    }
</style>
""", unsafe_allow_html=True)

DRAFT_FIELDS = ['category', 'menu_item'] + list(NUMERIC_INPUT_FIELDS)

DRAFT_LABELS = {
    'category': 'Category',
    'menu_item': 'Menu Item',
    'qty_nos': 'Qty Nos.',
    'unit_cost_jd': 'Unit Cost (JD)',
    'unit_price_jd': 'Unit Price (JD)',
    'cost_on_pos_jd': 'Cost on POS (JD)',
    'total_sales_jd': 'Total Sales (JD)',
}


# =============================================================================
# SESSION STATE HELPERS
# Mutations run in widget callbacks; results are shown as flash messages
# =============================================================================

def init_session_state():
    defaults = {
        'upload_key': 0,
        'grid_version': 0,
        'flash_message': "",
        'flash_error': "",
        'editing_item_id': None,
        'selected_item_id': None,
        'selected_date': date.today(),
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value

    if 'draft_id' not in st.session_state:
        _set_draft(create_empty_draft())


def _set_draft(draft, editing_item_id=None):
    """Load a draft into the entry form widgets"""
    st.session_state.draft_id = draft['id']
    st.session_state.editing_item_id = editing_item_id
    for field in DRAFT_FIELDS:
        st.session_state[f"draft_{field}"] = draft.get(field, '')


def _clear_selection():
    st.session_state.selected_item_id = None
    st.session_state.grid_version += 1


def _run_action(description, action, *args, **kwargs):
    """
    Run a database action and report failures as a flash error.

    Returns:
        (ok, result)
    """
    try:
        return True, action(*args, **kwargs)
    except Exception as e:
        logger.exception(f"{description} failed")
        st.session_state.flash_error = f"❌ {description} failed: {e}"
        return False, None


def _find_selected(items):
    selected_id = st.session_state.get('selected_item_id')
    return next((item for item in items if item.get('id') == selected_id), None)


# =============================================================================
# CALLBACKS
# =============================================================================

def on_new_record():
    _set_draft(create_empty_draft())
    _clear_selection()


def on_duplicate_record(items):
    target = _find_selected(items)
    if not target:
        st.session_state.flash_error = "Select a record in the table first."
        return
    _set_draft({**item_to_draft(target), 'id': new_item_id()})
    _clear_selection()


def on_edit_record(items):
    target = _find_selected(items)
    if not target:
        st.session_state.flash_error = "Select a record in the table first."
        return
    _set_draft(item_to_draft(target), editing_item_id=target['id'])


def on_cancel_edit():
    _set_draft(create_empty_draft())


def on_submit_draft(supabase, restaurant_id, day_key, settings, items):
    draft = {field: st.session_state.get(f"draft_{field}", '') for field in DRAFT_FIELDS}
    draft['id'] = st.session_state.editing_item_id or st.session_state.draft_id
    item_input = draft_to_input(draft)

    ok, _ = _run_action(
        "Saving record", upsert_item,
        supabase, restaurant_id, day_key, item_input, settings, items
    )
    if ok:
        st.session_state.flash_message = f"✅ Saved {item_input['menu_item'] or 'record'}"
        _set_draft(create_empty_draft())
        _clear_selection()


def on_delete_record(supabase, restaurant_id, day_key, items):
    target = _find_selected(items)
    if not target:
        st.session_state.flash_error = "Select a record in the table first."
        return

    ok, _ = _run_action(
        "Deleting record", delete_item,
        supabase, restaurant_id, day_key, target['id'], items
    )
    if ok:
        if st.session_state.editing_item_id == target['id']:
            _set_draft(create_empty_draft())
        _clear_selection()
        st.session_state.flash_message = f"🗑️ Deleted {target.get('menu_item') or 'record'}"


def on_import_csv(supabase, restaurant_id, day_key, settings, items):
    uploaded = st.session_state.get(f"csv_uploader_{st.session_state.upload_key}")
    if uploaded is None:
        st.session_state.flash_error = "Choose a CSV file to import."
        return

    try:
        new_items = parse_csv(read_uploaded_text(uploaded), settings)
    except Exception:
        logger.exception(f"Could not parse {uploaded.name}")
        st.session_state.flash_error = "❌ Failed to parse CSV. Please ensure it matches the expected format."
        return

    if not new_items:
        st.session_state.flash_error = "No rows detected in CSV file."
        return

    ok, saved = _run_action(
        "Importing CSV", import_items,
        supabase, restaurant_id, day_key, new_items, settings, items
    )
    if ok:
        st.session_state.flash_message = f"✅ Imported {saved} of {len(new_items)} records from {uploaded.name}"
        st.session_state.upload_key += 1
        _set_draft(create_empty_draft())
        _clear_selection()


def on_clear_day(supabase, restaurant_id, day_key, items):
    if not st.session_state.get('confirm_clear'):
        st.session_state.flash_error = "Tick the confirmation box to clear the day."
        return

    ok, _ = _run_action(
        "Clearing day", clear_day,
        supabase, restaurant_id, day_key, [item['id'] for item in items]
    )
    if ok:
        st.session_state.flash_message = f"🧹 Cleared {len(items)} records for {day_key}"
        st.session_state.confirm_clear = False
        _set_draft(create_empty_draft())
        _clear_selection()


def on_toggle_implied_sales(supabase, restaurant_id, day_key, widget_key):
    settings = {'use_implied_sales_when_blank': bool(st.session_state[widget_key])}
    _run_action("Saving day settings", save_settings, supabase, restaurant_id, day_key, settings)


def on_create_restaurant(supabase):
    ok, restaurant_id = _run_action(
        "Creating restaurant", create_restaurant,
        supabase, st.session_state.get('new_restaurant_name', '')
    )
    if ok:
        st.session_state.restaurant_id = restaurant_id
        st.session_state.new_restaurant_name = ""
        st.session_state.flash_message = "✅ Restaurant created"


def on_rename_restaurant(supabase, restaurant_id, widget_key):
    ok, _ = _run_action(
        "Renaming restaurant", rename_restaurant,
        supabase, restaurant_id, st.session_state.get(widget_key, '')
    )
    if ok:
        st.session_state.flash_message = "✅ Restaurant renamed"


def on_archive_restaurant(supabase, restaurant_id):
    ok, _ = _run_action("Archiving restaurant", archive_restaurant, supabase, restaurant_id)
    if ok:
        st.session_state.pop('restaurant_id', None)
        st.session_state.flash_message = "🗄️ Restaurant archived"


def on_open_day(day_str):
    st.session_state.selected_date = date.fromisoformat(day_str)


# =============================================================================
# MAIN
# =============================================================================

def main():
    init_session_state()

    # Initialize Supabase
    supabase = init_supabase()
    user = ensure_session(supabase)

    # Sidebar - Database status, restaurant & date selection
    with st.sidebar:
        st.header("🍽️ Daily Food Cost")

        st.subheader("💾 Database")
        if supabase:
            summary = get_data_summary(supabase)
            st.markdown('<div class="db-status-connected">✅ Connected</div>', unsafe_allow_html=True)
            st.caption(f"🏪 {summary.get('restaurant_count', 0)} restaurants, "
                       f"📅 {summary.get('day_count', 0)} days, "
                       f"📋 {summary.get('line_item_count', 0)} records")
            if user is None:
                st.caption("🔓 Not signed in")
            elif getattr(user, 'is_anonymous', False):
                st.caption("🔐 Anonymous session")
            else:
                st.caption(f"🔐 {getattr(user, 'email', None) or 'Authenticated'}")
        else:
            st.markdown('<div class="db-status-disconnected">❌ Not connected</div>', unsafe_allow_html=True)

        st.divider()
        restaurant_id, restaurant_names = display_restaurant_switcher(supabase)

        st.divider()
        st.subheader("📅 Date")
        selected_date = st.date_input("Worksheet date", key="selected_date")
        day_key = selected_date.isoformat()

    restaurant_name = restaurant_names.get(restaurant_id, '').strip()
    st.title(f"🍽️ Food Cost for {restaurant_name or '—'}")
    st.caption(f"📅 {day_key}")

    display_flash_messages()

    if not supabase:
        st.info("💾 Add Supabase credentials to .streamlit/secrets.toml to start.")
        return

    if not restaurant_id:
        st.info("🏪 Create a restaurant in the sidebar to begin.")
        return

    day = load_day(supabase, restaurant_id, day_key)
    items = day['items']
    settings = day['settings']

    with st.sidebar:
        display_day_settings(supabase, restaurant_id, day_key, settings)
        st.divider()
        display_recent_days(supabase, restaurant_id, day_key)

    form_col, toolbar_col = st.columns([3, 1])
    with form_col:
        display_entry_form(supabase, restaurant_id, day_key, settings, items)
    with toolbar_col:
        display_toolbar(supabase, restaurant_id, day_key, settings, items)

    st.divider()
    display_day_view(supabase, restaurant_id, day_key)


def display_flash_messages():
    """Show action results (persist across reruns until dismissed)"""
    if st.session_state.flash_message:
        st.success(st.session_state.flash_message)
        if st.button("Dismiss", key="dismiss_success"):
            st.session_state.flash_message = ""
            st.rerun()

    if st.session_state.flash_error:
        st.error(st.session_state.flash_error)
        if st.button("Dismiss Error", key="dismiss_error"):
            st.session_state.flash_error = ""
            st.rerun()


def display_restaurant_switcher(supabase):
    """Restaurant select + create / rename / archive. Returns (id, {id: name})"""
    st.subheader("🏪 Restaurant")

    restaurants = list_active_restaurants(supabase)
    names = {r['id']: r.get('name') or '' for r in restaurants}

    restaurant_id = None
    if restaurants:
        if st.session_state.get('restaurant_id') not in names:
            st.session_state.restaurant_id = restaurants[0]['id']
        restaurant_id = st.selectbox(
            "Restaurant",
            options=list(names),
            format_func=lambda rid: names.get(rid, rid),
            key="restaurant_id"
        )
    else:
        st.caption("No restaurants yet")

    with st.expander("⚙️ Manage restaurants"):
        st.text_input("New restaurant name", key="new_restaurant_name")
        st.button("➕ Create restaurant", on_click=on_create_restaurant, args=(supabase,),
                  disabled=not supabase, use_container_width=True)

        if restaurant_id:
            st.markdown("---")
            rename_key = f"rename_{restaurant_id}"
            st.text_input("Rename to", value=names[restaurant_id], key=rename_key)
            st.button("✏️ Rename", on_click=on_rename_restaurant,
                      args=(supabase, restaurant_id, rename_key), use_container_width=True)
            st.button("🗄️ Archive", on_click=on_archive_restaurant,
                      args=(supabase, restaurant_id), use_container_width=True)

    return restaurant_id, names


def display_day_settings(supabase, restaurant_id, day_key, settings):
    st.subheader("⚙️ Day Settings")
    widget_key = f"implied_sales_{restaurant_id}_{day_key}"
    if widget_key not in st.session_state:
        st.session_state[widget_key] = bool(settings.get('use_implied_sales_when_blank'))

    st.toggle(
        "Use implied sales when blank",
        key=widget_key,
        on_change=on_toggle_implied_sales,
        args=(supabase, restaurant_id, day_key, widget_key),
        help="When Total Sales is 0, use Qty × Unit Price instead. Applies to records saved from now on."
    )


def display_recent_days(supabase, restaurant_id, day_key):
    st.subheader("🗓️ Recent days")
    days = list_recent_days(supabase, restaurant_id)

    if not days:
        st.caption("No recent days yet.")
        return

    for day in days:
        summary = day['summary']
        st.button(
            f"{day['date']} · {format_percentage(summary.get('food_cost_pct'))}",
            key=f"recent_{day['date']}",
            on_click=on_open_day,
            args=(day['date'],),
            type="primary" if day['date'] == day_key else "secondary",
            use_container_width=True
        )
        st.caption(f"Sales {format_currency(summary.get('total_sales_jd'))} · "
                   f"Par Cst {format_currency(summary.get('par_cst_jd'))}")


def display_entry_form(supabase, restaurant_id, day_key, settings, items):
    """Add / edit one record. Numbers are typed as text and rounded to 3 decimals."""
    editing = st.session_state.editing_item_id
    st.subheader("✏️ Edit Record" if editing else "➕ New Record")

    with st.form("line_item_form"):
        col1, col2 = st.columns(2)
        with col1:
            st.text_input(DRAFT_LABELS['category'], key="draft_category")
        with col2:
            st.text_input(DRAFT_LABELS['menu_item'], key="draft_menu_item")

        number_cols = st.columns(len(NUMERIC_INPUT_FIELDS))
        for col, field in zip(number_cols, NUMERIC_INPUT_FIELDS):
            with col:
                st.text_input(DRAFT_LABELS[field], key=f"draft_{field}", placeholder="0.000")

        st.form_submit_button(
            "💾 Update record" if editing else "💾 Add record",
            type="primary",
            on_click=on_submit_draft,
            args=(supabase, restaurant_id, day_key, settings, items)
        )

    if editing:
        st.button("Cancel edit", on_click=on_cancel_edit)


def display_toolbar(supabase, restaurant_id, day_key, settings, items):
    st.subheader("🧰 Actions")

    st.button("➕ New record", on_click=on_new_record, use_container_width=True)
    st.button("📄 Duplicate record", on_click=on_duplicate_record, args=(items,),
              use_container_width=True)
    st.button("✏️ Edit record", on_click=on_edit_record, args=(items,),
              use_container_width=True)
    st.button("🗑️ Delete record", on_click=on_delete_record,
              args=(supabase, restaurant_id, day_key, items), use_container_width=True)

    st.download_button(
        "⬇️ Export CSV",
        data=export_csv(items),
        file_name=export_filename(day_key),
        mime="text/csv",
        use_container_width=True
    )

    with st.expander("⬆️ Import CSV"):
        st.caption(f"Columns: {', '.join(CSV_HEADERS)}")
        st.file_uploader(
            "CSV file",
            type=['csv'],
            key=f"csv_uploader_{st.session_state.upload_key}"
        )
        st.button("Import", on_click=on_import_csv,
                  args=(supabase, restaurant_id, day_key, settings, items),
                  use_container_width=True)

    with st.expander("🧹 Clear day"):
        st.warning("⚠️ Deletes every record for this day")
        st.checkbox("Yes, clear this day", key="confirm_clear")
        st.button("Clear day", type="primary", on_click=on_clear_day,
                  args=(supabase, restaurant_id, day_key, items), use_container_width=True)


# =============================================================================
# LIVE DAY VIEW - re-runs on its own so other clients' edits show up
# =============================================================================

@st.fragment(run_every=REFRESH_INTERVAL_SECONDS)
def display_day_view(supabase, restaurant_id, day_key):
    day = load_day(supabase, restaurant_id, day_key)
    display_metrics(day['summary'])
    display_line_items(day['items'], day['summary'])


def display_metrics(summary, profile=CALCULATION_PROFILE):
    """Headline metric cards for the day"""
    food_cost = summary.get('food_cost_pct', 0)
    status = food_cost_status(food_cost)

    col1, col2, col3, col4 = st.columns(4)

    with col1:
        st.metric(
            "Food Cost (%)",
            format_percentage(food_cost),
            delta=f"{'⚠️ High' if status != 'ok' else '✅ OK'}",
            delta_color="inverse" if status != 'ok' else "normal",
            help=("Cost on POS ÷ Total Sales × 100" if profile == PROFILE_POS_COST
                  else "Total Cost ÷ Total Sales × 100")
        )

    with col2:
        if profile == PROFILE_POS_COST:
            st.metric("Variance (%)", format_percentage(summary.get('variance_pct')),
                      help="Recipe food cost % − day food cost %")
        else:
            st.metric("Total Cost (JD)", format_currency(summary.get('total_cost_jd')))

    with col3:
        st.metric("Total Sales (JD)", format_currency(summary.get('total_sales_jd')))

    with col4:
        st.metric(
            "Par Cst (JD)",
            format_currency(summary.get('par_cst_jd')),
            help=("Total Cost − Cost on POS" if profile == PROFILE_POS_COST
                  else "Total Sales − Total Cost")
        )


def display_line_items(items, summary, profile=CALCULATION_PROFILE):
    """Worksheet grid with single-row selection and a totals line"""
    st.subheader("📋 Line Items")

    if not items:
        st.info("No records for this day yet. Add one above or import a CSV.")
        st.session_state.selected_item_id = None
        return

    columns = DISPLAY_COLUMNS[profile]
    df = pd.DataFrame([{label: item.get(key) for label, key, _ in columns} for item in items])

    column_config = {}
    for label, _, kind in columns:
        if kind == 'currency':
            column_config[label] = st.column_config.NumberColumn(label, format="%.3f")
        elif kind == 'percent':
            column_config[label] = st.column_config.NumberColumn(label, format="%.1f%%")
        elif kind == 'number':
            column_config[label] = st.column_config.NumberColumn(label, format="%.3f")

    event = st.dataframe(
        df,
        column_config=column_config,
        hide_index=True,
        use_container_width=True,
        on_select="rerun",
        selection_mode="single-row",
        key=f"line_items_grid_{st.session_state.grid_version}"
    )

    rows = event.selection.rows
    if rows and rows[0] < len(items):
        st.session_state.selected_item_id = items[rows[0]]['id']
        st.caption(f"Selected: {items[rows[0]].get('menu_item') or '(unnamed)'}")
    else:
        st.session_state.selected_item_id = None

    if profile == PROFILE_POS_COST:
        st.markdown(
            f"**Totals:** Cost {format_currency(summary.get('total_cost_jd'))} · "
            f"Cost on POS {format_currency(summary.get('total_cost_on_pos_jd'))} · "
            f"Sales {format_currency(summary.get('total_sales_jd'))} · "
            f"Recipe FC {format_percentage(summary.get('recipe_food_cost_pct'))} · "
            f"Total Variance {format_currency(summary.get('total_variance_jd'))}"
        )
    else:
        st.markdown(
            f"**Totals:** Cost {format_currency(summary.get('total_cost_jd'))} · "
            f"Sales {format_currency(summary.get('total_sales_jd'))} · "
            f"Food Cost {format_percentage(summary.get('food_cost_pct'))}"
        )


if __name__ == "__main__":
    main()
