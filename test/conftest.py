import copy
import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest


# --------------------------------------------------------------------
# IN-MEMORY SUPABASE CLIENT
# Supports the PostgREST calls used by database.py
# --------------------------------------------------------------------
class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.op = 'select'
        self.payload = None
        self.on_conflict = None
        self.count = None
        self.filters = []
        self.orders = []
        self.window = None
        self.max_rows = None

    def select(self, columns='*', count=None):
        self.op = 'select'
        self.count = count
        return self

    def insert(self, payload):
        self.op = 'insert'
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict=None):
        self.op = 'upsert'
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def update(self, payload):
        self.op = 'update'
        self.payload = payload
        return self

    def delete(self):
        self.op = 'delete'
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def range(self, start, end):
        self.window = (start, end)
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        self.client.calls.append((self.table, self.op, copy.deepcopy(self.payload)))
        if self.client.fail_on and self.client.fail_on(self.table, self.op, self.payload):
            raise Exception(f"simulated {self.op} failure on {self.table}")

        rows = self.client.tables.setdefault(self.table, [])
        handler = getattr(self, f"_execute_{self.op}")
        return handler(rows)

    def _execute_select(self, rows):
        matched = [copy.deepcopy(r) for r in rows if self._matches(r)]
        for column, desc in reversed(self.orders):
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column) or ''), reverse=desc)
        total = len(matched)
        if self.window:
            matched = matched[self.window[0]:self.window[1] + 1]
        if self.max_rows is not None:
            matched = matched[:self.max_rows]
        return SimpleNamespace(data=matched, count=total if self.count else None)

    def _execute_insert(self, rows):
        records = self.payload if isinstance(self.payload, list) else [self.payload]
        inserted = []
        for record in records:
            row = {'id': str(uuid.uuid4()), **copy.deepcopy(record)}
            rows.append(row)
            inserted.append(copy.deepcopy(row))
        return SimpleNamespace(data=inserted, count=None)

    def _execute_upsert(self, rows):
        records = self.payload if isinstance(self.payload, list) else [self.payload]
        keys = [k.strip() for k in (self.on_conflict or 'id').split(',')]
        saved = []
        for record in records:
            existing = next(
                (r for r in rows if all(r.get(k) == record.get(k) for k in keys)), None
            )
            if existing is None:
                existing = {}
                rows.append(existing)
            existing.update(copy.deepcopy(record))
            saved.append(copy.deepcopy(existing))
        return SimpleNamespace(data=saved, count=None)

    def _execute_update(self, rows):
        updated = []
        for row in rows:
            if self._matches(row):
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
        return SimpleNamespace(data=updated, count=None)

    def _execute_delete(self, rows):
        removed = [r for r in rows if self._matches(r)]
        rows[:] = [r for r in rows if not self._matches(r)]
        return SimpleNamespace(data=removed, count=None)


class FakeRpc:
    """apply_day_change from schema.sql; a failing step leaves every table unchanged"""

    def __init__(self, client, name, params):
        self.client = client
        self.name = name
        self.params = copy.deepcopy(params)

    def execute(self):
        assert self.name == 'apply_day_change'
        p = self.params
        self.client.calls.append(('rpc', self.name, copy.deepcopy(p)))

        day_row = {
            'restaurant_id': p['p_restaurant_id'],
            'day_date': p['p_day_date'],
            'summary': p['p_summary'],
            'updated_at': p['p_updated_at'],
        }
        if p['p_settings'] is not None:
            day_row['settings'] = p['p_settings']

        steps = [('days', 'upsert', day_row)]
        if p['p_upserts']:
            steps.insert(0, ('line_items', 'upsert', p['p_upserts']))
        if p['p_delete_ids']:
            steps.insert(0, ('line_items', 'delete', p['p_delete_ids']))

        fail_on = self.client.fail_on
        for table, op, payload in steps:
            if fail_on and fail_on(table, op, payload):
                raise Exception(f"simulated {op} failure on {table}; transaction rolled back")

        items = self.client.tables.setdefault('line_items', [])

        def in_day(row):
            return (row.get('restaurant_id') == p['p_restaurant_id']
                    and row.get('day_date') == p['p_day_date'])

        items[:] = [r for r in items if not (in_day(r) and r.get('id') in p['p_delete_ids'])]

        for record in p['p_upserts']:
            existing = next((r for r in items if in_day(r) and r.get('id') == record['id']), None)
            if existing is None:
                items.append({**record, 'restaurant_id': p['p_restaurant_id'],
                              'day_date': p['p_day_date']})
            else:
                created_at = existing.get('created_at')
                existing.update(record)
                existing['created_at'] = created_at

        days = self.client.tables.setdefault('days', [])
        existing_day = next((r for r in days if in_day(r)), None)
        if existing_day is None:
            days.append({'settings': {'use_implied_sales_when_blank': False}, **day_row})
        else:
            existing_day.update(day_row)

        return SimpleNamespace(data=None, count=None)


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.fail_on = None
        self.auth = MagicMock()

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        return FakeRpc(self, name, params)

    def rows(self, name):
        return self.tables.get(name, [])


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def restaurant_id(fake_db):
    fake_db.tables['restaurants'] = [{'id': 'rest-1', 'name': 'Main Kitchen', 'is_active': True}]
    return 'rest-1'
