# hotelwatch/storage/supabase_client.py

"""PostgREST (Supabase) implementation of the table client."""

import logging
from collections.abc import Mapping
from typing import Any

from curl_cffi import requests as curl_requests

from hotelwatch.config.settings import Settings
from hotelwatch.storage.table_client import (
    Range,
    Row,
    StorageError,
    is_membership,
)

logger = logging.getLogger("hotelwatch.storage.supabase")

# Characters that force a value to be double-quoted inside in.(...)
_RESERVED_CHARS = frozenset(',()"\\ ')


def _literal(value: object) -> str:
    """Render a Python value as a PostgREST filter literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _list_literal(value: object) -> str:
    text = _literal(value)
    if any(ch in _RESERVED_CHARS for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def encode_filters(
    filters: Mapping[str, Any] | None,
) -> list[tuple[str, str]]:
    """Translate a filter mapping into PostgREST query parameters."""
    params: list[tuple[str, str]] = []
    for column, value in (filters or {}).items():
        if is_membership(value):
            items = ",".join(_list_literal(v) for v in value)
            params.append((column, f"in.({items})"))
        elif isinstance(value, Range):
            params.append((column, f"{value.op}.{_literal(value.value)}"))
        elif value is None:
            params.append((column, "is.null"))
        else:
            params.append((column, f"eq.{_literal(value)}"))
    return params


class SupabaseTableClient:
    """Talks to a Supabase project's REST and auth-admin endpoints."""

    def __init__(
        self,
        url: str,
        service_key: str,
        session: curl_requests.Session | None = None,
    ) -> None:
        base = url.rstrip("/")
        self._rest_url = f"{base}/rest/v1"
        self._auth_url = f"{base}/auth/v1"
        self._headers: dict[str, str] = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.session = session or curl_requests.Session()
        self._request_timeout: int = Settings.REQUEST_TIMEOUT

    def _request(
        self,
        method: str,
        url: str,
        params: list[tuple[str, str]] | None = None,
        payload: object | None = None,
        prefer: str | None = None,
    ) -> Any:
        """Send one request; any transport or HTTP error is a StorageError."""
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            resp = self.session.request(
                method,
                url,
                headers=headers,
                params=params,
                json=payload,
                timeout=self._request_timeout,
            )
        except Exception as exc:
            raise StorageError(
                f"{method} {url} failed: {exc}"
            ) from exc

        if resp.status_code >= 400:
            raise StorageError(
                f"{method} {url} returned HTTP {resp.status_code}: "
                f"{resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.text:
            return []
        try:
            return resp.json()
        except ValueError as exc:
            raise StorageError(
                f"{method} {url} returned invalid JSON"
            ) from exc

    def _table_url(self, table: str) -> str:
        return f"{self._rest_url}/{table}"

    # ── TableClient ──────────────────────────────────────

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        params = [("select", columns), *encode_filters(filters)]
        if order_by is not None:
            direction = "desc" if descending else "asc"
            params.append(("order", f"{order_by}.{direction}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        data = self._request("GET", self._table_url(table), params=params)
        return list(data)

    def insert(self, table: str, rows: list[Row]) -> list[Row]:
        data = self._request(
            "POST",
            self._table_url(table),
            payload=rows,
            prefer="return=representation",
        )
        return list(data)

    def upsert(
        self,
        table: str,
        rows: list[Row],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> list[Row]:
        resolution = (
            "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        )
        data = self._request(
            "POST",
            self._table_url(table),
            params=[("on_conflict", on_conflict.replace(" ", ""))],
            payload=rows,
            prefer=f"resolution={resolution},return=representation",
        )
        return list(data)

    def update(
        self,
        table: str,
        values: Row,
        filters: Mapping[str, Any],
    ) -> list[Row]:
        if not filters:
            msg = "update() requires at least one filter"
            raise ValueError(msg)
        data = self._request(
            "PATCH",
            self._table_url(table),
            params=encode_filters(filters),
            payload=values,
            prefer="return=representation",
        )
        return list(data)

    def get_user_email(self, user_id: str) -> str | None:
        """Resolve a user's email through the auth admin API."""
        try:
            data = self._request(
                "GET", f"{self._auth_url}/admin/users/{user_id}",
            )
        except StorageError as exc:
            if exc.status_code == 404:
                return None
            raise
        if not isinstance(data, dict):
            return None
        email = data.get("email")
        return str(email) if email else None
