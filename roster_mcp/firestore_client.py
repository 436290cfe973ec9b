from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from time import sleep
from typing import Any

import httpx

from .config import StoreConfig
from .utils import to_iso_datetime

logger = logging.getLogger(__name__)

SCHEDULES = "schedules"
USERS = "users"
USER_AVAILABILITY = "user_availability"
CONSTRAINTS_DOC = "app-data/scheduleConstraints"


@dataclass(frozen=True)
class ReadOperation:
    method: str
    path_template: str


READ_ONLY_OPERATIONS: dict[str, ReadOperation] = {
    "get_document": ReadOperation("GET", "{documents}/{path}"),
    "list_documents": ReadOperation("GET", "{documents}/{path}"),
    "run_query": ReadOperation("POST", "{documents}:runQuery"),
}


def decode_value(value: dict[str, Any]) -> Any:
    """Turn one Firestore typed value into plain Python."""
    if "nullValue" in value:
        return None
    if "stringValue" in value:
        return value["stringValue"]
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "timestampValue" in value:
        return value["timestampValue"]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "geoPointValue" in value:
        return dict(value["geoPointValue"])
    if "bytesValue" in value:
        return value["bytesValue"]
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: decode_value(val) for key, val in fields.items()}


def decode_document(doc: dict[str, Any]) -> dict[str, Any]:
    """`{name, fields, ...}` -> `{"id": <last path segment>, **fields}`."""
    name = str(doc.get("name", ""))
    return {"id": name.rsplit("/", 1)[-1], **decode_fields(doc.get("fields", {}))}


class ReadOnlyFirestoreClient:
    """Strict read-only Firestore REST client.

    Only the operation names listed in READ_ONLY_OPERATIONS are executable.
    Any unknown operation is rejected before any network request is sent.
    """

    def __init__(self, *, base_url: str, timezone: str, timeout_s: float = 30.0, retries: int = 3, page_size: int = 300):
        self.base_url = base_url.rstrip("/")
        self.timezone = timezone
        self.timeout_s = timeout_s
        self.retries = max(1, retries)
        self.page_size = page_size

    def _request(
        self,
        *,
        operation: str,
        cfg: StoreConfig,
        path: str = "",
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        op = READ_ONLY_OPERATIONS.get(operation)
        if op is None:
            raise ValueError(f"Operation '{operation}' is not allowed in read-only mode")

        url = self.base_url + op.path_template.format(documents=cfg.documents_path, path=path)
        query = {"key": cfg.api_key, **(params or {})}

        last_exc: Exception | None = None
        for attempt in range(self.retries):
            try:
                resp = httpx.request(
                    op.method,
                    url,
                    headers={"Accept": "application/json"},
                    params=query,
                    json=json_body,
                    timeout=self.timeout_s,
                )
                if resp.status_code >= 500 and attempt < self.retries - 1:
                    logger.warning("%s %s returned %s, retrying", op.method, path or operation, resp.status_code)
                    sleep(2**attempt)
                    continue
                resp.raise_for_status()
                return resp
            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exc = exc
                if attempt < self.retries - 1:
                    logger.warning("%s %s failed (%s), retrying", op.method, path or operation, exc)
                    sleep(2**attempt)
                    continue
                raise
        if last_exc:
            raise last_exc
        raise RuntimeError("request failed without an explicit exception")

    def get_document(self, cfg: StoreConfig, path: str) -> dict[str, Any] | None:
        """Decoded document at `path`, or None when it does not exist."""
        try:
            resp = self._request(operation="get_document", cfg=cfg, path=path)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise
        return decode_document(resp.json())

    def list_documents(self, cfg: StoreConfig, collection: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": self.page_size}
            if token:
                params["pageToken"] = token
            resp = self._request(operation="list_documents", cfg=cfg, path=collection, params=params)
            payload = resp.json() or {}
            items.extend(decode_document(d) for d in payload.get("documents", []))
            token = payload.get("nextPageToken")
            if not token:
                break
        return items

    def run_query(self, cfg: StoreConfig, structured_query: dict[str, Any]) -> list[dict[str, Any]]:
        resp = self._request(operation="run_query", cfg=cfg, json_body={"structuredQuery": structured_query})
        rows = resp.json()
        if not isinstance(rows, list):
            return []
        # Rows without a document only carry read metadata.
        return [decode_document(row["document"]) for row in rows if isinstance(row, dict) and row.get("document")]

    def fetch_availability(self, cfg: StoreConfig, *, start_date: date, end_date: date) -> list[dict[str, Any]]:
        query = {
            "from": [{"collectionId": USER_AVAILABILITY}],
            "where": {
                "compositeFilter": {
                    "op": "AND",
                    "filters": [
                        {
                            "fieldFilter": {
                                "field": {"fieldPath": "date"},
                                "op": "GREATER_THAN_OR_EQUAL",
                                "value": {"timestampValue": to_iso_datetime(start_date, self.timezone)},
                            }
                        },
                        {
                            "fieldFilter": {
                                "field": {"fieldPath": "date"},
                                "op": "LESS_THAN_OR_EQUAL",
                                "value": {
                                    "timestampValue": to_iso_datetime(end_date, self.timezone, end_of_day=True)
                                },
                            }
                        },
                    ],
                }
            },
        }
        return self.run_query(cfg, query)

    def fetch_snapshot_payload(
        self,
        cfg: StoreConfig,
        *,
        week_id: str,
        start_date: date,
        end_date: date,
    ) -> dict[str, Any]:
        return {
            "schedule": self.get_document(cfg, f"{SCHEDULES}/{week_id}"),
            "users": self.list_documents(cfg, USERS),
            "availability": self.fetch_availability(cfg, start_date=start_date, end_date=end_date),
            "constraints": self.get_document(cfg, CONSTRAINTS_DOC),
        }
