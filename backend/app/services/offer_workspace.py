from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from app.core.offer_permissions import Identity
from app.models.domain import (
    COMMUNICATIONS_TABLE,
    DOCUMENTS_TABLE,
    FORMAL_REQUESTS_TABLE,
    OFFERS_TABLE,
    TASKS_TABLE,
    TIMELINE_TABLE,
    DocumentStatus,
    OfferRole,
    TaskStatus,
)
from app.services.offer_cache import communications_key, documents_key, offer_key
from app.services.offer_communications import filter_for_role, visible_to
from app.services.offer_documents import pending_document_count
from app.services.offer_errors import OfferError
from app.services.offer_formal_requests import open_request_count
from app.services.offer_realtime import OfferChange, OfferRealtimeDispatcher, apply_change
from app.services.offer_store_gateway import STORE_FAILURES
from app.services.offer_tasks import pending_task_count
from app.services.offer_timeline import entry_visible_to

if TYPE_CHECKING:
    from app.services.offer_services import OfferServices

logger = logging.getLogger("marketplace.offers.workspace")

SECTIONS: tuple[str, ...] = ("offer", "tasks", "documents", "formal_requests", "communications", "timeline")

TABLE_SECTIONS: dict[str, str] = {
    OFFERS_TABLE: "offer",
    TASKS_TABLE: "tasks",
    DOCUMENTS_TABLE: "documents",
    FORMAL_REQUESTS_TABLE: "formal_requests",
    COMMUNICATIONS_TABLE: "communications",
    TIMELINE_TABLE: "timeline",
}

# Sections listed newest first; communications read oldest first like a chat.
NEWEST_FIRST = frozenset({"tasks", "documents", "formal_requests", "timeline"})


@dataclass
class SectionState:
    data: Any = None
    is_loading: bool = False
    error: Optional[OfferError] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "is_loading": self.is_loading,
            "error": None if self.error is None else {"code": self.error.code, "message": self.error.user_message},
        }


class OfferWorkspace:
    """Everything one identity sees of one offer.

    ``open`` resolves the role, loads all sections concurrently and starts
    realtime updates. ``close`` stops them; loads still in flight when the
    workspace closes are discarded.
    """

    def __init__(self, services: "OfferServices", identity: Identity, offer_id: str) -> None:
        self.services = services
        self.identity = identity
        self.offer_id = offer_id
        self.role: OfferRole = OfferRole.buyer
        self.permissions: dict[str, bool] = {}
        self.sections: dict[str, SectionState] = {name: SectionState() for name in SECTIONS}
        self.active_tab = "offer"
        self.closed = False
        self.dispatcher: Optional[OfferRealtimeDispatcher] = None

    async def __aenter__(self) -> "OfferWorkspace":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    def state(self, section: str) -> SectionState:
        return self.sections[section]

    @property
    def offer(self) -> Optional[dict[str, Any]]:
        return self.sections["offer"].data

    async def open(self) -> "OfferWorkspace":
        started = time.perf_counter()
        access = await self.services.roles.access(self.identity, self.offer_id)
        self.role = access.role
        self.permissions = access.permissions
        self.services.cache.set(offer_key(self.offer_id), access.offer)
        self.sections["offer"] = SectionState(data=access.offer)

        await asyncio.gather(*(self._load(name) for name in SECTIONS if name != "offer"))
        self._record_duration("initial_load", started)

        if not self.closed:
            self.dispatcher = self.services.dispatcher()
            for table in TABLE_SECTIONS:
                self.dispatcher.on(table, self.on_change)
            self.dispatcher.open(self.offer_id, viewer=self.identity, role=self.role)
        logger.info(
            "workspace_opened",
            extra={"offer_id": self.offer_id, "user_id": self.identity.user_id, "role": self.role.value},
        )
        return self

    async def refresh(self, section: Optional[str] = None) -> None:
        if section is not None and section not in SECTIONS:
            raise ValueError(f"unknown section {section!r}")
        self.services.telemetry.record_refresh()
        names = [section] if section else list(SECTIONS)
        for name in names:
            self._drop_cached(name)
        started = time.perf_counter()
        await asyncio.gather(*(self._load(name) for name in names))
        self._record_duration(f"refresh:{section or 'all'}", started)

    async def retry(self, section: str) -> None:
        """Reload one section after a failure; counted as a retry."""

        if section not in SECTIONS:
            raise ValueError(f"unknown section {section!r}")
        self.services.telemetry.record_retry()
        self._drop_cached(section)
        started = time.perf_counter()
        await self._load(section)
        self._record_duration(f"retry:{section}", started)

    def switch_tab(self, tab: str) -> None:
        if tab not in SECTIONS:
            raise ValueError(f"unknown tab {tab!r}")
        if tab != self.active_tab:
            self.services.telemetry.record_tab_switch(self.active_tab, tab)
            self.active_tab = tab

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.dispatcher is not None:
            self.dispatcher.close()
            self.dispatcher = None
        logger.info("workspace_closed", extra={"offer_id": self.offer_id})

    def summary(self) -> dict[str, int]:
        tasks = self.sections["tasks"].data or []
        documents = self.sections["documents"].data or []
        requests = self.sections["formal_requests"].data or []
        return {
            "pending_tasks": pending_task_count(tasks),
            "completed_tasks": sum(1 for t in tasks if t.get("status") == TaskStatus.completada.value),
            "pending_documents": pending_document_count(documents),
            "validated_documents": sum(1 for d in documents if d.get("status") == DocumentStatus.validado.value),
            "open_formal_requests": open_request_count(requests),
            "messages": len(self.sections["communications"].data or []),
            "timeline_events": len(self.sections["timeline"].data or []),
        }

    def on_change(self, change: OfferChange) -> None:
        """Replace the changed row in its section (last write wins)."""

        if self.closed or change.offer_id != self.offer_id:
            return
        name = TABLE_SECTIONS.get(change.table)
        if name is None:
            return
        state = self.sections[name]

        if name == "offer":
            if change.operation == "UPDATE" and change.record is not None:
                state.data = dict(change.record)
                self.services.cache.set(offer_key(self.offer_id), state.data)
            return

        if change.record is not None and not self._visible(name, change.record):
            change = OfferChange("DELETE", change.table, change.offer_id, None, change.record)
        state.data = apply_change(list(state.data or []), change, prepend=name in NEWEST_FIRST)
        self._drop_cached(name)

    def _visible(self, name: str, record: dict[str, Any]) -> bool:
        if name == "communications":
            return visible_to(record, self.role)
        if name == "timeline":
            return entry_visible_to(record, self.role)
        return True

    # ------------------------------------------------------------------

    def _loader(self, name: str) -> Callable[[], Awaitable[Any]]:
        s = self.services
        oid = self.offer_id

        async def offer() -> Any:
            row, _ = await s.roles.load_offer(oid)
            return row

        loaders: dict[str, Callable[[], Awaitable[Any]]] = {
            "offer": offer,
            "tasks": lambda: s.tasks.rows_for(oid),
            "documents": lambda: s.documents.rows_for(oid),
            "formal_requests": lambda: s.formal_requests.rows_for(oid),
            "communications": lambda: s.communications.rows_for(oid, descending=False),
            "timeline": lambda: s.timeline.list(oid, role=self.role),
        }
        return loaders[name]

    def _cache_key(self, name: str) -> Optional[str]:
        return {
            "offer": offer_key(self.offer_id),
            "documents": documents_key(self.offer_id),
            "communications": communications_key(self.offer_id),
        }.get(name)

    def _drop_cached(self, name: str) -> None:
        key = self._cache_key(name)
        if key is not None:
            self.services.cache.delete(key)

    async def _load(self, name: str) -> None:
        state = self.sections[name]
        state.is_loading = True
        state.error = None
        started = time.perf_counter()
        key = self._cache_key(name)
        try:
            cached, generation = None, 0
            if key is not None:
                cached = self.services.cache.get(key)
                self.services.telemetry.record_cache_access(cached is not None)
                generation = self.services.cache.generation(key)
            if cached is not None:
                data = cached
            else:
                data = await self._loader(name)()
                # Skipped when a write invalidated the key while this read was in flight.
                if key is not None and not self.closed:
                    self.services.cache.set_if_current(key, data, generation)
        except OfferError as exc:
            if self.closed:
                return
            state.error = exc
            self.services.telemetry.record_error(
                exc, context=f"load:{name}", count=not isinstance(exc, STORE_FAILURES)
            )
            logger.warning(
                "workspace_section_failed",
                extra={"offer_id": self.offer_id, "section": name, "error_code": exc.code},
            )
            return
        finally:
            state.is_loading = False

        if self.closed:
            return
        if name == "communications":
            data = filter_for_role(list(data), self.role)
        state.data = data
        self._record_duration(f"load:{name}", started)

    def _record_duration(self, phase: str, started: float) -> None:
        self.services.telemetry.record_load_time(phase, (time.perf_counter() - started) * 1000.0)
