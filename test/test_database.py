import itertools
from datetime import date
import threading
import time
from types import SimpleNamespace

import pytest

import database
from calculations import aggregate_summary, derive_line_item, empty_summary
from config import DEFAULT_SETTINGS, PROFILE_IMPLIED_SALES
from database import (
    ensure_session,
    list_active_restaurants, create_restaurant, rename_restaurant, archive_restaurant,
    load_day, list_recent_days, get_data_summary,
    upsert_item, import_items, delete_item, clear_day, recompute_and_save_summary,
    save_settings, subscribe_day, subscribe_recent_days, subscribe_restaurants
)

DAY = '2024-03-01'


@pytest.fixture(autouse=True)
def ticking_clock(monkeypatch):
    """Strictly increasing timestamps so recent-days ordering is deterministic"""
    ticks = itertools.count()

    def now_iso():
        tick = next(ticks)
        return f"2024-03-01T{tick // 3600:02d}:{tick // 60 % 60:02d}:{tick % 60:02d}+00:00"

    monkeypatch.setattr(database, '_now_iso', now_iso)


def line_input(item_id, qty=10, unit_cost=1.5, unit_price=3, cost_on_pos=12, total_sales=30,
               menu_item='Burger'):
    return {
        'id': item_id,
        'category': 'Mains',
        'menu_item': menu_item,
        'qty_nos': qty,
        'unit_cost_jd': unit_cost,
        'unit_price_jd': unit_price,
        'cost_on_pos_jd': cost_on_pos,
        'total_sales_jd': total_sales,
    }


def stored_summary(fake_db, restaurant_id, day=DAY):
    row = next(r for r in fake_db.rows('days')
               if r['restaurant_id'] == restaurant_id and r['day_date'] == day)
    return row['summary']


def assert_summary_matches_items(fake_db, restaurant_id, day=DAY):
    """The stored day summary equals a fresh aggregate of the stored items"""
    items = load_day(fake_db, restaurant_id, day)['items']
    expected = aggregate_summary(items)
    summary = stored_summary(fake_db, restaurant_id, day)
    for key, value in expected.items():
        if key != 'updated_at':
            assert summary[key] == pytest.approx(value)
    assert summary['updated_at']


# --------------------------------------------------------------------
# CONNECTION
# --------------------------------------------------------------------
def test_ensure_session_reuses_existing_session(fake_db):
    user = SimpleNamespace(id='u1', is_anonymous=False)
    fake_db.auth.get_session.return_value = SimpleNamespace(user=user)

    assert ensure_session(fake_db) is user
    fake_db.auth.sign_in_anonymously.assert_not_called()


def test_ensure_session_signs_in_anonymously(fake_db):
    user = SimpleNamespace(id='anon', is_anonymous=True)
    fake_db.auth.get_session.return_value = None
    fake_db.auth.sign_in_anonymously.return_value = SimpleNamespace(user=user)

    assert ensure_session(fake_db) is user


def test_ensure_session_continues_without_auth(fake_db):
    fake_db.auth.get_session.return_value = None
    fake_db.auth.sign_in_anonymously.side_effect = Exception("anonymous sign-ins are disabled")

    assert ensure_session(fake_db) is None
    assert ensure_session(None) is None


# --------------------------------------------------------------------
# RESTAURANTS
# --------------------------------------------------------------------
def test_create_rename_archive_restaurant(fake_db):
    rid = create_restaurant(fake_db, '  Harbor Grill ')

    assert [r['name'] for r in list_active_restaurants(fake_db)] == ['Harbor Grill']

    rename_restaurant(fake_db, rid, 'Harbour Grill')
    assert list_active_restaurants(fake_db)[0]['name'] == 'Harbour Grill'

    archive_restaurant(fake_db, rid)
    assert list_active_restaurants(fake_db) == []
    assert fake_db.rows('restaurants')[0]['is_active'] is False


def test_restaurant_name_required(fake_db):
    with pytest.raises(ValueError):
        create_restaurant(fake_db, '   ')
    with pytest.raises(ValueError):
        rename_restaurant(fake_db, 'r', '')


def test_active_restaurants_sorted_case_insensitive(fake_db):
    for name in ['zest', 'Alpha', 'beta']:
        create_restaurant(fake_db, name)

    assert [r['name'] for r in list_active_restaurants(fake_db)] == ['Alpha', 'beta', 'zest']


def test_list_active_restaurants_without_client():
    assert list_active_restaurants(None) == []


# --------------------------------------------------------------------
# LOADING
# --------------------------------------------------------------------
def test_load_new_day_returns_defaults(fake_db, restaurant_id):
    day = load_day(fake_db, restaurant_id, DAY)

    assert day['items'] == []
    assert day['summary'] == empty_summary()
    assert day['settings'] == DEFAULT_SETTINGS


def test_load_day_without_client_or_restaurant(fake_db):
    assert load_day(None, 'r', DAY)['items'] == []
    assert load_day(fake_db, None, DAY)['settings'] == DEFAULT_SETTINGS


def test_load_day_accepts_date_objects(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, date(2024, 3, 1), line_input('a'), DEFAULT_SETTINGS, [])

    assert len(load_day(fake_db, restaurant_id, DAY)['items']) == 1


def test_load_day_orders_items_by_menu_item(fake_db, restaurant_id):
    items = []
    for item_id, name in [('1', 'Soup'), ('2', 'Burger'), ('3', 'Cake')]:
        upsert_item(fake_db, restaurant_id, DAY, line_input(item_id, menu_item=name),
                    DEFAULT_SETTINGS, items)
        items = load_day(fake_db, restaurant_id, DAY)['items']

    assert [i['menu_item'] for i in items] == ['Burger', 'Cake', 'Soup']


def test_get_data_summary_counts(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])

    summary = get_data_summary(fake_db)

    assert summary == {'restaurant_count': 1, 'day_count': 1, 'line_item_count': 1}
    assert get_data_summary(None) == {}


# --------------------------------------------------------------------
# SAVING
# --------------------------------------------------------------------
def test_upsert_item_saves_item_and_summary(fake_db, restaurant_id):
    item_id = upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])

    assert item_id == 'a'
    row = fake_db.rows('line_items')[0]
    assert row['restaurant_id'] == restaurant_id
    assert row['day_date'] == DAY
    assert row['total_cost_jd'] == pytest.approx(15)

    assert stored_summary(fake_db, restaurant_id)['food_cost_pct'] == pytest.approx(40)
    assert_summary_matches_items(fake_db, restaurant_id)


def test_upsert_item_without_id_creates_one(fake_db, restaurant_id):
    partial = line_input(None)

    item_id = upsert_item(fake_db, restaurant_id, DAY, partial, DEFAULT_SETTINGS, [])

    assert item_id
    assert fake_db.rows('line_items')[0]['id'] == item_id


def test_upsert_item_update_keeps_created_at(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    first = load_day(fake_db, restaurant_id, DAY)['items'][0]

    upsert_item(fake_db, restaurant_id, DAY, line_input('a', qty=20, total_sales=60),
                DEFAULT_SETTINGS, [first])

    items = load_day(fake_db, restaurant_id, DAY)['items']
    assert len(items) == 1
    assert items[0]['qty_nos'] == 20
    assert items[0]['created_at'] == first['created_at']
    assert items[0]['updated_at'] != first['updated_at']
    assert_summary_matches_items(fake_db, restaurant_id)


def test_upsert_item_stores_settings(fake_db, restaurant_id):
    settings = {'use_implied_sales_when_blank': True}

    upsert_item(fake_db, restaurant_id, DAY, line_input('a', total_sales=0), settings, [])

    day = load_day(fake_db, restaurant_id, DAY)
    assert day['settings'] == settings
    assert day['items'][0]['total_sales_jd'] == pytest.approx(30)


def test_upsert_item_failure_propagates(fake_db, restaurant_id):
    fake_db.fail_on = lambda table, op, payload: table == 'line_items'

    with pytest.raises(Exception):
        upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])


def test_import_items_merges_with_existing(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    existing = load_day(fake_db, restaurant_id, DAY)['items']
    imported = [derive_line_item(line_input('b', menu_item='Cake')),
                derive_line_item(line_input('c', menu_item='Tea'))]

    saved = import_items(fake_db, restaurant_id, DAY, imported, DEFAULT_SETTINGS, existing)

    assert saved == 2
    assert len(load_day(fake_db, restaurant_id, DAY)['items']) == 3
    assert stored_summary(fake_db, restaurant_id)['total_cost_jd'] == pytest.approx(45)
    assert_summary_matches_items(fake_db, restaurant_id)


def test_import_items_replaces_same_id(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    existing = load_day(fake_db, restaurant_id, DAY)['items']

    import_items(fake_db, restaurant_id, DAY, [derive_line_item(line_input('a', qty=1))],
                 DEFAULT_SETTINGS, existing)

    items = load_day(fake_db, restaurant_id, DAY)['items']
    assert len(items) == 1
    assert items[0]['qty_nos'] == 1
    assert_summary_matches_items(fake_db, restaurant_id)


def test_import_items_skips_rows_that_fail(fake_db, restaurant_id):
    def fail(table, op, payload):
        return table == 'line_items' and op == 'upsert' and any(r['id'] == 'bad' for r in payload)
    fake_db.fail_on = fail

    imported = [derive_line_item(line_input('good')), derive_line_item(line_input('bad'))]
    saved = import_items(fake_db, restaurant_id, DAY, imported, DEFAULT_SETTINGS, [])

    assert saved == 1
    assert [r['id'] for r in fake_db.rows('line_items')] == ['good']
    assert_summary_matches_items(fake_db, restaurant_id)


def test_import_items_in_chunks(fake_db, restaurant_id):
    imported = [derive_line_item(line_input(str(i))) for i in range(5)]

    saved = import_items(fake_db, restaurant_id, DAY, imported, DEFAULT_SETTINGS, [], chunk_size=2)

    assert saved == 5
    assert len([c for c in fake_db.calls if c[0] == 'rpc']) == 3
    assert stored_summary(fake_db, restaurant_id)['total_cost_jd'] == pytest.approx(75)
    assert_summary_matches_items(fake_db, restaurant_id)


def test_import_nothing_writes_nothing(fake_db, restaurant_id):
    assert import_items(fake_db, restaurant_id, DAY, [], DEFAULT_SETTINGS, []) == 0
    assert fake_db.calls == []


# --------------------------------------------------------------------
# SUMMARY STAYS IN STEP WITH ITEMS WHEN THE DAY WRITE FAILS
# --------------------------------------------------------------------
def fail_day_writes(table, op, payload):
    return table == 'days'


def test_failed_day_write_keeps_new_item_out(fake_db, restaurant_id):
    fake_db.fail_on = fail_day_writes

    with pytest.raises(Exception):
        upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])

    assert fake_db.rows('line_items') == []
    assert load_day(fake_db, restaurant_id, DAY)['summary'] == empty_summary()


def test_failed_day_write_keeps_previous_item_values(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    items = load_day(fake_db, restaurant_id, DAY)['items']
    fake_db.fail_on = fail_day_writes

    with pytest.raises(Exception):
        upsert_item(fake_db, restaurant_id, DAY, line_input('a', qty=99), DEFAULT_SETTINGS, items)

    fake_db.fail_on = None
    assert load_day(fake_db, restaurant_id, DAY)['items'][0]['qty_nos'] == 10
    assert_summary_matches_items(fake_db, restaurant_id)


def test_failed_day_write_keeps_deleted_and_cleared_items(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    items = load_day(fake_db, restaurant_id, DAY)['items']
    fake_db.fail_on = fail_day_writes

    with pytest.raises(Exception):
        delete_item(fake_db, restaurant_id, DAY, 'a', items)
    with pytest.raises(Exception):
        clear_day(fake_db, restaurant_id, DAY, ['a'])

    fake_db.fail_on = None
    assert [i['id'] for i in load_day(fake_db, restaurant_id, DAY)['items']] == ['a']
    assert_summary_matches_items(fake_db, restaurant_id)


def test_failed_day_write_during_import_saves_nothing(fake_db, restaurant_id):
    fake_db.fail_on = fail_day_writes
    imported = [derive_line_item(line_input('b')), derive_line_item(line_input('c'))]

    saved = import_items(fake_db, restaurant_id, DAY, imported, DEFAULT_SETTINGS, [])

    assert saved == 0
    assert fake_db.rows('line_items') == []


def test_delete_item_updates_summary(fake_db, restaurant_id):
    items = []
    for item_id in ['a', 'b']:
        upsert_item(fake_db, restaurant_id, DAY, line_input(item_id), DEFAULT_SETTINGS, items)
        items = load_day(fake_db, restaurant_id, DAY)['items']

    delete_item(fake_db, restaurant_id, DAY, 'a', items)

    remaining = load_day(fake_db, restaurant_id, DAY)['items']
    assert [i['id'] for i in remaining] == ['b']
    assert stored_summary(fake_db, restaurant_id)['total_cost_jd'] == pytest.approx(15)
    assert_summary_matches_items(fake_db, restaurant_id)


def test_delete_last_item_gives_empty_summary(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    items = load_day(fake_db, restaurant_id, DAY)['items']

    delete_item(fake_db, restaurant_id, DAY, 'a', items)

    summary = stored_summary(fake_db, restaurant_id)
    assert summary['total_cost_jd'] == 0
    assert summary['food_cost_pct'] == 0


def test_clear_day_resets_items_summary_and_settings(fake_db, restaurant_id):
    settings = {'use_implied_sales_when_blank': True}
    items = []
    for item_id in ['a', 'b']:
        upsert_item(fake_db, restaurant_id, DAY, line_input(item_id), settings, items)
        items = load_day(fake_db, restaurant_id, DAY)['items']
    upsert_item(fake_db, restaurant_id, '2024-03-02', line_input('other'), settings, [])

    clear_day(fake_db, restaurant_id, DAY, [i['id'] for i in items])

    day = load_day(fake_db, restaurant_id, DAY)
    assert day['items'] == []
    assert day['settings'] == DEFAULT_SETTINGS
    assert stored_summary(fake_db, restaurant_id)['total_sales_jd'] == 0
    assert len(load_day(fake_db, restaurant_id, '2024-03-02')['items']) == 1


def test_clear_empty_day_deletes_nothing(fake_db, restaurant_id):
    clear_day(fake_db, restaurant_id, DAY, [])

    rpc_calls = [c for c in fake_db.calls if c[0] == 'rpc']
    assert rpc_calls[0][2]['p_delete_ids'] == []
    assert not [c for c in fake_db.calls if c[1] == 'delete']
    assert stored_summary(fake_db, restaurant_id) is not None


def test_recompute_and_save_summary_reloads_items(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    # edit the stored row behind the worksheet's back
    row = fake_db.rows('line_items')[0]
    row['total_cost_jd'] = 99

    summary = recompute_and_save_summary(fake_db, restaurant_id, DAY)

    assert summary['total_cost_jd'] == pytest.approx(99)
    assert summary['updated_at']
    assert stored_summary(fake_db, restaurant_id)['total_cost_jd'] == pytest.approx(99)


def test_recompute_with_supplied_items_and_profile(fake_db, restaurant_id):
    items = [derive_line_item(line_input('a'), profile=PROFILE_IMPLIED_SALES)]

    summary = recompute_and_save_summary(fake_db, restaurant_id, DAY, items, PROFILE_IMPLIED_SALES)

    assert summary['par_cst_jd'] == pytest.approx(15)
    assert 'variance_pct' not in summary


def test_save_settings_keeps_summary(fake_db, restaurant_id):
    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    before = dict(stored_summary(fake_db, restaurant_id))

    saved = save_settings(fake_db, restaurant_id, DAY, {'use_implied_sales_when_blank': True})

    assert saved == {'use_implied_sales_when_blank': True}
    assert load_day(fake_db, restaurant_id, DAY)['settings'] == saved
    assert stored_summary(fake_db, restaurant_id) == before


def test_list_recent_days_newest_first(fake_db, restaurant_id):
    for day in ['2024-03-01', '2024-02-15', '2024-03-03']:
        upsert_item(fake_db, restaurant_id, day, line_input('a'), DEFAULT_SETTINGS, [])

    days = list_recent_days(fake_db, restaurant_id)

    assert [d['date'] for d in days] == ['2024-03-03', '2024-02-15', '2024-03-01']
    assert days[0]['summary']['food_cost_pct'] == pytest.approx(40)
    assert len(list_recent_days(fake_db, restaurant_id, limit=2)) == 2
    assert list_recent_days(fake_db, 'someone-else') == []


# --------------------------------------------------------------------
# LIVE UPDATES
# --------------------------------------------------------------------
class Collector:
    """Records snapshots; `done` is set once one satisfies `until`"""

    def __init__(self, until=lambda snapshot: True):
        self.snapshots = []
        self.until = until
        self.done = threading.Event()

    def __call__(self, snapshot):
        self.snapshots.append(snapshot)
        if self.until(snapshot):
            self.done.set()


def test_subscribe_day_delivers_changes(fake_db, restaurant_id):
    initial = Collector()
    saved = Collector(until=lambda day: day['summary']['total_cost_jd'] > 0)

    def callback(day):
        initial(day)
        saved(day)

    unsubscribe = subscribe_day(fake_db, restaurant_id, DAY, callback, interval=0.01)
    try:
        assert initial.done.wait(2)
        assert initial.snapshots[0]['items'] == []

        upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])

        assert saved.done.wait(2)
        latest = saved.snapshots[-1]
        assert [i['id'] for i in latest['items']] == ['a']
        assert latest['summary']['total_cost_jd'] == pytest.approx(15)
    finally:
        unsubscribe()


def test_subscribe_skips_unchanged_snapshots(fake_db, restaurant_id):
    collector = Collector()

    unsubscribe = subscribe_day(fake_db, restaurant_id, DAY, collector, interval=0.01)
    assert collector.done.wait(2)
    time.sleep(0.1)
    unsubscribe()

    assert len(collector.snapshots) == 1


def test_unsubscribe_stops_callbacks(fake_db, restaurant_id):
    collector = Collector()

    unsubscribe = subscribe_restaurants(fake_db, collector, interval=0.01)
    assert collector.done.wait(2)
    unsubscribe()
    delivered = len(collector.snapshots)

    create_restaurant(fake_db, 'Another')
    time.sleep(0.1)

    assert len(collector.snapshots) == delivered


def test_unsubscribe_from_inside_callback(fake_db, restaurant_id):
    collector = Collector()
    holder = {}
    ready = threading.Event()

    def callback(days):
        ready.wait(2)
        collector(days)
        holder['unsubscribe']()

    holder['unsubscribe'] = subscribe_recent_days(fake_db, restaurant_id, callback, interval=0.01)
    ready.set()
    assert collector.done.wait(2)

    upsert_item(fake_db, restaurant_id, DAY, line_input('a'), DEFAULT_SETTINGS, [])
    time.sleep(0.1)

    assert len(collector.snapshots) == 1
    holder['unsubscribe']()


def test_subscription_survives_failing_fetch(fake_db, restaurant_id):
    fake_db.fail_on = lambda table, op, payload: op == 'select'
    collector = Collector()

    unsubscribe = subscribe_day(fake_db, restaurant_id, DAY, collector, interval=0.01)
    time.sleep(0.05)
    assert collector.snapshots == []

    fake_db.fail_on = None
    assert collector.done.wait(2)
    unsubscribe()
