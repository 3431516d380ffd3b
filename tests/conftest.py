"""
Pytest configuration and fixtures for AMPIA API tests.

The Supabase facade is replaced by an in-memory store so the API can be
exercised end to end without a database. Tokens are signed locally with the
test SECRET_KEY.
"""

import os
import threading
from collections import defaultdict
from typing import Any, Dict, Generator, List, Optional

os.environ["SECRET_KEY"] = "ampia-test-secret"

import pytest
from fastapi.testclient import TestClient

from ampia.core import database
from ampia.core.auth import create_access_token
from ampia.core.database import DuplicateRowError, parse_order
from main import app


class InMemoryStore:
    """Dict-backed stand-in for SupabaseStore, same method signatures."""

    UNIQUE_KEYS = {
        "UserChallenges": ("user_id", "challenge_id"),
        "Payments": ("transaction_ref",),
        "Tickets": ("payment_id",),
    }

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.calls: List[tuple] = []
        self.fail_increment = False
        self._lock = threading.RLock()

    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [self._store_row(table, dict(row)) for row in rows]

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables[table]

    def _store_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        if row.get("id") is None:
            row["id"] = max((r["id"] for r in self.tables[table]), default=0) + 1
        self.tables[table].append(row)
        return row

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
        for column, value in (filters or {}).items():
            if value is None:
                continue
            if isinstance(value, dict):
                if "in" in value:
                    if str(row.get(column)) not in {str(v) for v in value["in"]}:
                        return False
                elif "like" in value:
                    if str(value["like"]).lower() not in str(row.get(column) or "").lower():
                        return False
                elif "neq" in value:
                    if str(row.get(column)) == str(value["neq"]):
                        return False
            elif str(row.get(column)) != str(value):
                return False
        return True

    def select(self, table, filters=None, order=None, limit=None, offset=None, columns="*"):
        self.calls.append(("select", table))
        rows = [dict(r) for r in self.tables[table] if self._matches(r, filters)]

        column, desc = parse_order(order)
        if column:
            rows.sort(key=lambda r: r.get(column) or "", reverse=desc)
        start = int(offset or 0)
        if limit:
            return rows[start : start + int(limit)]
        return rows[start:]

    def count(self, table, filters=None):
        self.calls.append(("count", table))
        return sum(1 for r in self.tables[table] if self._matches(r, filters))

    def insert(self, table, row):
        self.calls.append(("insert", table))
        row = dict(row)
        keys = self.UNIQUE_KEYS.get(table)
        with self._lock:
            if keys and all(row.get(k) is not None for k in keys):
                for existing in self.tables[table]:
                    if all(str(existing.get(k)) == str(row.get(k)) for k in keys):
                        raise DuplicateRowError(table)
            return dict(self._store_row(table, row))

    def update(self, table, patch, filters):
        self.calls.append(("update", table))
        updated = []
        with self._lock:
            for row in self.tables[table]:
                if self._matches(row, filters):
                    row.update(patch)
                    updated.append(dict(row))
        return updated[0] if updated else None

    def delete(self, table, filters):
        self.calls.append(("delete", table))
        with self._lock:
            self.tables[table] = [
                r for r in self.tables[table] if not self._matches(r, filters)
            ]
        return True

    def _find(self, table, row_id):
        return next(
            (r for r in self.tables[table] if str(r.get("id")) == str(row_id)), None
        )

    def increment(self, table, column, row_id, amount):
        self.calls.append(("increment", table))
        if self.fail_increment:
            raise RuntimeError(f"increment_column failed on {table}.{column}")
        with self._lock:
            row = self._find(table, row_id)
            if row is None:
                raise RuntimeError(f"no {table} row with id {row_id}")
            row[column] = (row.get(column) or 0) + int(amount)
            return row[column]

    def rpc(self, function, params=None):
        """The Postgres functions from supabase/migrations, one row lock each."""
        self.calls.append(("rpc", function))
        params = params or {}
        with self._lock:
            if function == "reserve_places":
                row = self._find("TicketTypes", params["p_ticket_type_id"])
                quantity = int(params["p_quantity"])
                if row is None or (row.get("available_quantity") or 0) < quantity:
                    return None
                row["available_quantity"] -= quantity
                return row["available_quantity"]

            if function == "append_badge":
                row = self._find("Users", params["p_user_id"])
                if row is None:
                    return None
                badges = list(row.get("badges") or [])
                if params["p_badge"] not in badges:
                    badges.append(params["p_badge"])
                row["badges"] = badges
                return list(badges)

        raise NotImplementedError(function)


@pytest.fixture
def store(monkeypatch) -> InMemoryStore:
    """Fresh in-memory store installed as the API's data store."""
    memory = InMemoryStore()
    monkeypatch.setattr(database, "_store", memory)
    return memory


@pytest.fixture
def client(store) -> Generator[TestClient, None, None]:
    """Test client for the FastAPI app."""
    with TestClient(app, base_url="http://test") as c:
        yield c


@pytest.fixture
def api_base() -> str:
    """Base path for API endpoints."""
    return "/api"


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user id."""

    def _headers(user_id: Any = 1, **claims) -> dict:
        token = create_access_token({"id": user_id, **claims})
        return {"Authorization": f"Bearer {token}"}

    return _headers
