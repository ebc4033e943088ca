"""
Database module for Supabase operations
Handles all data persistence for the Daily Food Cost Worksheet

Layout:
    restaurants  - one row per restaurant (archived ones have is_active = false)
    days         - one row per (restaurant, date): summary + settings
    line_items   - one row per (restaurant, date, item id)

Every mutation recomputes the day summary from the resulting item set and
writes it together with the item change in one transaction (the
apply_day_change function in schema.sql), so the stored summary always
matches the stored items.

The Supabase client is owned by the caller and passed into every function.
"""

import streamlit as st
from supabase import create_client, Client
from datetime import datetime, date, timezone
from typing import Optional, List, Dict, Any, Callable, Iterable, Union
import threading
import logging

from config import (
    CALCULATION_PROFILE, DEFAULT_SETTINGS, LINE_ITEM_COLUMNS, NUMERIC_INPUT_FIELDS,
    PAGE_SIZE, RECENT_DAYS_LIMIT, REFRESH_INTERVAL_SECONDS, TABLES
)
from calculations import aggregate_summary, coerce_number, derive_line_item, empty_summary
from utils import new_item_id

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DAY_CONFLICT_COLUMNS = 'restaurant_id,day_date'
DAY_CHANGE_FUNCTION = 'apply_day_change'

_TEXT_COLUMNS = ('id', 'category', 'menu_item')


# =============================================================================
# CONNECTION
# =============================================================================

def init_supabase() -> Optional[Client]:
    """Initialize Supabase client from Streamlit secrets"""
    try:
        url = st.secrets["supabase"]["url"]
        key = st.secrets["supabase"]["key"]
        return create_client(url, key)
    except Exception as e:
        st.warning(f"⚠️ Supabase not configured. Error: {e}")
        return None


def ensure_session(supabase: Client):
    """
    Make sure the client has an auth session.

    Reuses an existing session, otherwise signs in anonymously. Projects
    without anonymous sign-in keep working unauthenticated.

    Returns:
        The signed-in user, or None when running without auth
    """
    if not supabase:
        return None

    try:
        session = supabase.auth.get_session()
        if session and session.user:
            return session.user

        response = supabase.auth.sign_in_anonymously()
        return response.user if response else None

    except Exception as e:
        logger.warning(f"Anonymous sign-in unavailable, continuing without authentication: {e}")
        return None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _day_key(day_date: Union[date, str]) -> str:
    """Days are keyed by ISO date (YYYY-MM-DD)"""
    if isinstance(day_date, (date, datetime)):
        return day_date.isoformat()[:10]
    return str(day_date)


def _row_to_item(row: Dict) -> Dict:
    """Database row -> line item (numeric columns coerced, keys dropped)"""
    item = {k: v for k, v in row.items() if k not in ('restaurant_id', 'day_date')}

    for column in LINE_ITEM_COLUMNS:
        if column in _TEXT_COLUMNS:
            item[column] = '' if item.get(column) is None else str(item[column])
        elif column in item or column in NUMERIC_INPUT_FIELDS:
            item[column] = coerce_number(item.get(column))

    return item


def _item_to_record(item: Dict, restaurant_id: str, day_key: str,
                    created_at: str, updated_at: str) -> Dict:
    record = {column: item[column] for column in LINE_ITEM_COLUMNS if column in item}
    record.update({
        'restaurant_id': restaurant_id,
        'day_date': day_key,
        'created_at': created_at,
        'updated_at': updated_at,
    })
    return record


def _ensure_line_input(partial: Dict) -> Dict:
    """Fill in a partial line item input (missing id -> new id, numbers coerced)"""
    item = dict(partial)
    item['id'] = str(partial.get('id') or new_item_id())
    item['category'] = str(partial.get('category') or '')
    item['menu_item'] = str(partial.get('menu_item') or '')
    for field in NUMERIC_INPUT_FIELDS:
        item[field] = coerce_number(partial.get(field))
    return item


def _save_day_change(
    supabase: Client,
    restaurant_id: str,
    day_key: str,
    summary: Dict,
    now: str,
    records: Optional[List[Dict]] = None,
    delete_ids: Optional[Iterable[str]] = None,
    settings: Optional[Dict] = None
) -> Dict:
    """
    Write line item changes and the day row in one transaction.

    Calls the apply_day_change database function (see schema.sql), which
    deletes `delete_ids`, upserts `records` (existing rows keep their
    created_at) and upserts the day row with the new summary. Either all of
    it is stored or none of it. Settings are left untouched when not given.

    Returns:
        The stored summary (with updated_at)
    """
    stamped = {**summary, 'updated_at': now}

    supabase.rpc(DAY_CHANGE_FUNCTION, {
        'p_restaurant_id': restaurant_id,
        'p_day_date': day_key,
        'p_upserts': records or [],
        'p_delete_ids': list(delete_ids or []),
        'p_summary': stamped,
        'p_settings': {**DEFAULT_SETTINGS, **settings} if settings is not None else None,
        'p_updated_at': now,
    }).execute()

    return stamped


# =============================================================================
# RESTAURANTS
# =============================================================================

def _fetch_active_restaurants(supabase: Client) -> List[Dict]:
    result = supabase.table(TABLES['restaurants']).select('*').eq('is_active', True).execute()
    restaurants = result.data or []
    return sorted(restaurants, key=lambda r: str(r.get('name') or '').casefold())


def list_active_restaurants(supabase: Client) -> List[Dict]:
    """Active restaurants sorted by name (case-insensitive)"""
    if not supabase:
        return []

    try:
        return _fetch_active_restaurants(supabase)
    except Exception as e:
        logger.error(f"Error loading restaurants: {e}")
        st.error(f"Error loading restaurants: {e}")
        return []


def create_restaurant(supabase: Client, name: str) -> str:
    """Create an active restaurant and return its id"""
    name = (name or '').strip()
    if not name:
        raise ValueError("Restaurant name is required")

    now = _now_iso()
    result = supabase.table(TABLES['restaurants']).insert({
        'name': name,
        'is_active': True,
        'created_at': now,
        'updated_at': now,
    }).execute()

    restaurant_id = str(result.data[0]['id'])
    logger.info(f"Created restaurant {name} ({restaurant_id})")
    return restaurant_id


def rename_restaurant(supabase: Client, restaurant_id: str, name: str) -> None:
    name = (name or '').strip()
    if not name:
        raise ValueError("Restaurant name is required")

    supabase.table(TABLES['restaurants']).update({
        'name': name,
        'updated_at': _now_iso(),
    }).eq('id', restaurant_id).execute()
    logger.info(f"Renamed restaurant {restaurant_id} to {name}")


def archive_restaurant(supabase: Client, restaurant_id: str) -> None:
    """Hide a restaurant from the switcher (its days are kept)"""
    supabase.table(TABLES['restaurants']).update({
        'is_active': False,
        'updated_at': _now_iso(),
    }).eq('id', restaurant_id).execute()
    logger.info(f"Archived restaurant {restaurant_id}")


# =============================================================================
# LOAD FUNCTIONS
# =============================================================================

def _fetch_line_items(supabase: Client, restaurant_id: str, day_key: str) -> List[Dict]:
    all_data = []
    offset = 0

    while True:
        result = (
            supabase.table(TABLES['line_items'])
            .select('*')
            .eq('restaurant_id', restaurant_id)
            .eq('day_date', day_key)
            .order('menu_item')
            .order('id')
            .range(offset, offset + PAGE_SIZE - 1)
            .execute()
        )

        if not result.data:
            break

        all_data.extend(result.data)
        if len(result.data) < PAGE_SIZE:
            break
        offset += PAGE_SIZE

    return [_row_to_item(row) for row in all_data]


def _fetch_day(supabase: Client, restaurant_id: str, day_date: Union[date, str],
               profile: str = CALCULATION_PROFILE) -> Dict:
    day_key = _day_key(day_date)
    items = _fetch_line_items(supabase, restaurant_id, day_key)

    result = (
        supabase.table(TABLES['days'])
        .select('*')
        .eq('restaurant_id', restaurant_id)
        .eq('day_date', day_key)
        .limit(1)
        .execute()
    )
    row = result.data[0] if result.data else {}

    return {
        'items': items,
        'summary': {**empty_summary(profile), **(row.get('summary') or {})},
        'settings': {**DEFAULT_SETTINGS, **(row.get('settings') or {})},
    }


def load_day(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    profile: str = CALCULATION_PROFILE
) -> Dict:
    """
    Load one worksheet day.

    Returns:
        {'items': [...], 'summary': {...}, 'settings': {...}} - items ordered by
        menu item; summary and settings fall back to defaults for a new day
    """
    empty = {
        'items': [],
        'summary': empty_summary(profile),
        'settings': dict(DEFAULT_SETTINGS),
    }
    if not supabase or not restaurant_id:
        return empty

    try:
        return _fetch_day(supabase, restaurant_id, day_date, profile)
    except Exception as e:
        logger.error(f"Error loading day {_day_key(day_date)}: {e}")
        st.error(f"Error loading day: {e}")
        return empty


def _fetch_recent_days(supabase: Client, restaurant_id: str, limit: int = RECENT_DAYS_LIMIT,
                       profile: str = CALCULATION_PROFILE) -> List[Dict]:
    result = (
        supabase.table(TABLES['days'])
        .select('day_date, summary, updated_at')
        .eq('restaurant_id', restaurant_id)
        .order('updated_at', desc=True)
        .limit(limit)
        .execute()
    )

    return [
        {
            'date': row['day_date'],
            'summary': {**empty_summary(profile), **(row.get('summary') or {})},
        }
        for row in (result.data or [])
    ]


def list_recent_days(
    supabase: Client,
    restaurant_id: str,
    limit: int = RECENT_DAYS_LIMIT,
    profile: str = CALCULATION_PROFILE
) -> List[Dict]:
    """Most recently updated days first: [{'date': 'YYYY-MM-DD', 'summary': {...}}]"""
    if not supabase or not restaurant_id:
        return []

    try:
        return _fetch_recent_days(supabase, restaurant_id, limit, profile)
    except Exception as e:
        logger.error(f"Error loading recent days: {e}")
        st.error(f"Error loading recent days: {e}")
        return []


def get_data_summary(supabase: Client) -> Dict:
    """Get counts of stored restaurants, days and line items"""
    if not supabase:
        return {}

    summary = {}

    try:
        for key, table in [('restaurant_count', 'restaurants'),
                           ('day_count', 'days'),
                           ('line_item_count', 'line_items')]:
            result = supabase.table(TABLES[table]).select('*', count='exact').limit(1).execute()
            summary[key] = result.count if result.count else 0

    except Exception as e:
        logger.error(f"Error getting summary: {e}")

    return summary


# =============================================================================
# SAVE FUNCTIONS
# =============================================================================

def upsert_item(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    item_input: Dict,
    settings: Dict,
    existing_items: List[Dict],
    profile: str = CALCULATION_PROFILE
) -> str:
    """
    Add or update one line item and refresh the day summary.

    Args:
        supabase: Supabase client
        restaurant_id: Restaurant id
        day_date: Worksheet date
        item_input: Line item input (a missing id creates a new item)
        settings: Day settings (also saved on the day row)
        existing_items: The day's current items, used for the summary

    Returns:
        The item id
    """
    day_key = _day_key(day_date)
    now = _now_iso()

    derived = derive_line_item(_ensure_line_input(item_input), settings, profile)
    existing = next((i for i in existing_items if i.get('id') == derived['id']), None)

    updated_items = [i for i in existing_items if i.get('id') != derived['id']] + [derived]
    summary = aggregate_summary(updated_items, profile)

    created_at = (existing or {}).get('created_at') or now
    record = _item_to_record(derived, restaurant_id, day_key, created_at, now)

    logger.info(f"Saving line item {derived['id']} for {restaurant_id} on {day_key}")
    _save_day_change(supabase, restaurant_id, day_key, summary, now,
                     records=[record], settings=settings)

    return derived['id']


def import_items(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    items: List[Dict],
    settings: Dict,
    existing_items: List[Dict],
    profile: str = CALCULATION_PROFILE,
    chunk_size: int = 50
) -> int:
    """
    Save imported (already derived) line items and refresh the day summary.

    Imported items replace existing items with the same id. Items are saved
    in chunks, each together with the summary of everything saved so far.
    If a chunk fails, its items are retried one at a time; items that still
    fail are logged and left out.

    Returns:
        Number of items saved
    """
    day_key = _day_key(day_date)
    now = _now_iso()
    current = {item.get('id'): item for item in existing_items}

    def save(batch: List[Dict]) -> None:
        updated = {**current, **{item.get('id'): item for item in batch}}
        records = [
            _item_to_record(item, restaurant_id, day_key, item.get('created_at') or now, now)
            for item in batch
        ]
        _save_day_change(supabase, restaurant_id, day_key,
                         aggregate_summary(list(updated.values()), profile), now,
                         records=records, settings=settings)
        current.update(updated)

    logger.info(f"Importing {len(items)} line items for {restaurant_id} on {day_key}")
    saved = 0

    for i in range(0, len(items), chunk_size):
        chunk = items[i:i + chunk_size]

        try:
            save(chunk)
            saved += len(chunk)
        except Exception as e:
            logger.warning(f"Saving {len(chunk)} imported line items failed: {e}, trying one at a time")

            for item in chunk:
                try:
                    save([item])
                    saved += 1
                except Exception as e2:
                    logger.error(f"Saving imported line item {item.get('id')} failed: {e2}")

    return saved


def delete_item(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    item_id: str,
    remaining_items: List[Dict],
    profile: str = CALCULATION_PROFILE
) -> None:
    """Delete one line item and refresh the day summary"""
    day_key = _day_key(day_date)
    summary = aggregate_summary([i for i in remaining_items if i.get('id') != item_id], profile)

    _save_day_change(supabase, restaurant_id, day_key, summary, _now_iso(), delete_ids=[item_id])
    logger.info(f"Deleted line item {item_id} for {restaurant_id} on {day_key}")


def clear_day(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    item_ids: Iterable[str],
    profile: str = CALCULATION_PROFILE
) -> None:
    """Delete the given items and reset the day's summary and settings"""
    day_key = _day_key(day_date)
    item_ids = list(item_ids)

    _save_day_change(supabase, restaurant_id, day_key, empty_summary(profile), _now_iso(),
                     delete_ids=item_ids, settings=DEFAULT_SETTINGS)
    logger.info(f"Cleared {len(item_ids)} line items for {restaurant_id} on {day_key}")


def recompute_and_save_summary(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    items: Optional[List[Dict]] = None,
    profile: str = CALCULATION_PROFILE
) -> Dict:
    """
    Recompute the day summary and save it.

    Items are reloaded from the database when not supplied.

    Returns:
        The saved summary (with updated_at)
    """
    day_key = _day_key(day_date)
    if items is None:
        items = _fetch_line_items(supabase, restaurant_id, day_key)

    summary = aggregate_summary(items, profile)
    return _save_day_change(supabase, restaurant_id, day_key, summary, _now_iso())


def save_settings(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    settings: Dict
) -> Dict:
    """Save the day settings; they apply to items saved from now on"""
    day_key = _day_key(day_date)
    merged = {**DEFAULT_SETTINGS, **(settings or {})}

    supabase.table(TABLES['days']).upsert({
        'restaurant_id': restaurant_id,
        'day_date': day_key,
        'settings': merged,
    }, on_conflict=DAY_CONFLICT_COLUMNS).execute()
    logger.info(f"Saved settings for {restaurant_id} on {day_key}: {merged}")

    return merged


# =============================================================================
# LIVE UPDATES
# Poll a snapshot in a background thread; call back when it changes.
# =============================================================================

_NOTHING_YET = object()


def _poll(fetch: Callable[[], Any], callback: Callable[[Any], None],
          interval: float, name: str) -> Callable[[], None]:
    """
    Run fetch() every `interval` seconds and pass new snapshots to callback.

    The first snapshot is always delivered. Returns unsubscribe(); once it
    returns, callback is not called again.
    """
    stop = threading.Event()

    def run():
        last = _NOTHING_YET
        while not stop.is_set():
            try:
                snapshot = fetch()
            except Exception as e:
                logger.warning(f"{name}: refresh failed: {e}")
            else:
                if snapshot != last and not stop.is_set():
                    last = snapshot
                    try:
                        callback(snapshot)
                    except Exception:
                        logger.exception(f"{name}: subscriber callback failed")
            stop.wait(interval)

    thread = threading.Thread(target=run, name=name, daemon=True)
    thread.start()

    def unsubscribe():
        stop.set()
        if thread is not threading.current_thread():
            thread.join()

    return unsubscribe


def subscribe_day(
    supabase: Client,
    restaurant_id: str,
    day_date: Union[date, str],
    callback: Callable[[Dict], None],
    profile: str = CALCULATION_PROFILE,
    interval: float = REFRESH_INTERVAL_SECONDS
) -> Callable[[], None]:
    """
    Watch one day. callback receives {'items', 'summary', 'settings'}.

    Returns:
        unsubscribe() - stops watching
    """
    day_key = _day_key(day_date)
    return _poll(
        lambda: _fetch_day(supabase, restaurant_id, day_key, profile),
        callback,
        interval,
        name=f"day:{restaurant_id}:{day_key}",
    )


def subscribe_recent_days(
    supabase: Client,
    restaurant_id: str,
    callback: Callable[[List[Dict]], None],
    limit: int = RECENT_DAYS_LIMIT,
    profile: str = CALCULATION_PROFILE,
    interval: float = REFRESH_INTERVAL_SECONDS
) -> Callable[[], None]:
    """Watch the recent-days list of a restaurant"""
    return _poll(
        lambda: _fetch_recent_days(supabase, restaurant_id, limit, profile),
        callback,
        interval,
        name=f"recent-days:{restaurant_id}",
    )


def subscribe_restaurants(
    supabase: Client,
    callback: Callable[[List[Dict]], None],
    interval: float = REFRESH_INTERVAL_SECONDS
) -> Callable[[], None]:
    """Watch the list of active restaurants"""
    return _poll(
        lambda: _fetch_active_restaurants(supabase),
        callback,
        interval,
        name="restaurants",
    )
