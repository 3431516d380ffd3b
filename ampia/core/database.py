"""
Database Configuration

Supabase client for REST API access (already pooled via PostgREST), and the
table-oriented facade the rest of the API talks to.

Filters are plain dicts mapping a column to either a scalar (equality) or a
single-operator dict:

    {"user_id": 12}
    {"challenge_id": {"in": [1, 2, 3]}}
    {"title": {"like": "concert"}}
    {"created_at": {"gte": "2024-01-01"}}

Columns whose filter value is None are ignored, so optional query parameters
can be passed straight through.
"""

from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client

from ampia.core.config import settings


UNIQUE_VIOLATION = "23505"

_RANGE_OPERATORS = ("gte", "lte", "gt", "lt", "neq")


class DuplicateRowError(Exception):
    """Raised when an insert hits a unique constraint."""

    def __init__(self, table: str, message: str = ""):
        super().__init__(message or f"Duplicate row in {table}")
        self.table = table


def parse_order(order: Optional[str]):
    """Split a PostgREST style "column.desc" order string."""
    if not order:
        return None, False
    column, _, direction = order.partition(".")
    return column, direction.lower() == "desc"


class SupabaseStore:
    """select/count/insert/update/delete over Supabase tables."""

    def __init__(self, client: Client):
        self.client = client

    def _apply_filters(self, query, filters: Optional[Dict[str, Any]]):
        for column, value in (filters or {}).items():
            if value is None:
                continue
            if isinstance(value, dict):
                if isinstance(value.get("in"), (list, tuple, set)):
                    query = query.in_(column, [str(v) for v in value["in"]])
                elif value.get("like"):
                    query = query.ilike(column, f"%{value['like']}%")
                else:
                    for operator in _RANGE_OPERATORS:
                        if value.get(operator) is not None:
                            query = getattr(query, operator)(column, value[operator])
                            break
            else:
                query = query.eq(column, value)
        return query

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        query = self._apply_filters(self.client.table(table).select(columns), filters)

        column, desc = parse_order(order)
        if column:
            query = query.order(column, desc=desc)
        if limit is not None and int(limit) > 0:
            if offset:
                query = query.range(int(offset), int(offset) + int(limit) - 1)
            else:
                query = query.limit(int(limit))

        result = query.execute()
        return result.data or []

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        query = self._apply_filters(
            self.client.table(table).select("id", count="exact"), filters
        )
        result = query.execute()
        if getattr(result, "count", None) is not None:
            return int(result.count)
        return len(result.data or [])

    def insert(self, table: str, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            result = self.client.table(table).insert(row).execute()
        except APIError as exc:
            if str(getattr(exc, "code", "")) == UNIQUE_VIOLATION:
                raise DuplicateRowError(table, str(exc.message)) from exc
            raise
        data = result.data or []
        return data[0] if data else None

    def update(
        self, table: str, patch: Dict[str, Any], filters: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        query = self._apply_filters(self.client.table(table).update(patch), filters)
        result = query.execute()
        data = result.data or []
        return data[0] if data else None

    def delete(self, table: str, filters: Dict[str, Any]) -> bool:
        query = self._apply_filters(self.client.table(table).delete(), filters)
        query.execute()
        return True

    def increment(self, table: str, column: str, row_id: Any, amount: int) -> int:
        """Atomically add ``amount`` to ``table.column`` and return the new value.

        Backed by the ``increment_column`` function from
        supabase/migrations/0001_challenges.sql.
        """
        value = self.rpc(
            "increment_column",
            {
                "p_table": table,
                "p_column": column,
                "p_id": str(row_id),
                "p_amount": int(amount),
            },
        )
        return int(value or 0)

    def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> Any:
        result = self.client.rpc(function, params or {}).execute()
        return result.data


_store: Optional[SupabaseStore] = None


def get_supabase_client() -> Client:
    """
    Get Supabase client instance.

    This uses the REST API which is already connection-pooled via PostgREST.
    """
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)


def get_store() -> SupabaseStore:
    """Lazily build the shared store so importing the app never needs credentials."""
    global _store
    if _store is None:
        _store = SupabaseStore(get_supabase_client())
    return _store
