from __future__ import annotations

import logging
from typing import Any, Optional

from app.services.offer_errors import (
    OfferError,
    ProvisioningGap,
    StoreOperationError,
    TransientStoreError,
)
from app.services.offer_telemetry import OfferTelemetry
from app.services.record_store import Filters, RecordStore, StoreError

logger = logging.getLogger("marketplace.store")

# Raised only from here, after the failed call is counted in telemetry.
STORE_FAILURES = (ProvisioningGap, TransientStoreError, StoreOperationError)


def translate_store_error(exc: StoreError, *, table: str, operation: str) -> OfferError:
    context = {"table": table, "operation": operation, "store_code": exc.code}
    if exc.is_undefined_relation:
        return ProvisioningGap(table, context=context)
    if exc.is_transient:
        return TransientStoreError(str(exc), context=context)
    return StoreOperationError(str(exc), context=context)


class StoreGateway:
    """Record-store access for the offer services.

    Counts every call in telemetry and turns ``StoreError`` into the typed
    offer errors. Reads may opt into ``missing_ok`` so a table that is not
    provisioned yet reads as empty.
    """

    def __init__(self, store: RecordStore, telemetry: Optional[OfferTelemetry] = None) -> None:
        self.store = store
        self.telemetry = telemetry

    def _record(self, success: bool) -> None:
        if self.telemetry is None:
            return
        try:
            self.telemetry.record_api_call(success)
        except Exception:
            logger.exception("telemetry_api_call_failed")

    def _fail(self, exc: StoreError, *, table: str, operation: str) -> OfferError:
        self._record(False)
        err = translate_store_error(exc, table=table, operation=operation)
        logger.warning(
            "store_call_failed",
            extra={"table": table, "operation": operation, "store_code": exc.code, "error_code": err.code},
        )
        return err

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        missing_ok: bool = False,
    ) -> list[dict[str, Any]]:
        try:
            rows = await self.store.select(
                table, filters, order_by=order_by, descending=descending, limit=limit
            )
        except StoreError as exc:
            if missing_ok and exc.is_undefined_relation:
                self._record(True)
                logger.info("relation_not_provisioned", extra={"table": table})
                return []
            raise self._fail(exc, table=table, operation="select") from exc
        self._record(True)
        return rows

    async def select_one(self, table: str, filters: Filters, *, missing_ok: bool = False) -> Optional[dict[str, Any]]:
        rows = await self.select(table, filters, limit=1, missing_ok=missing_ok)
        return rows[0] if rows else None

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        try:
            created = await self.store.insert(table, row)
        except StoreError as exc:
            raise self._fail(exc, table=table, operation="insert") from exc
        self._record(True)
        return created

    async def update(self, table: str, filters: Filters, patch: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            rows = await self.store.update(table, filters, patch)
        except StoreError as exc:
            raise self._fail(exc, table=table, operation="update") from exc
        self._record(True)
        return rows

    async def delete(self, table: str, filters: Filters) -> int:
        try:
            count = await self.store.delete(table, filters)
        except StoreError as exc:
            raise self._fail(exc, table=table, operation="delete") from exc
        self._record(True)
        return count
