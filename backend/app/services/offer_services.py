from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from app.core.offer_permissions import Identity
from app.services.offer_cache import OfferCache
from app.services.offer_communications import OfferCommunicationManager
from app.services.offer_documents import OfferDocumentManager
from app.services.offer_formal_requests import OfferFormalRequestManager
from app.services.offer_notifications import NotificationFeed, NotificationSink
from app.services.offer_realtime import OfferRealtimeDispatcher
from app.services.offer_roles import OfferRoleResolver
from app.services.offer_store_gateway import StoreGateway
from app.services.offer_tasks import OfferTaskManager
from app.services.offer_telemetry import OfferTelemetry
from app.services.offer_timeline import OfferTimeline
from app.services.offer_transitions import OfferLifecycle
from app.services.offer_workspace import OfferWorkspace
from app.services.record_store import RecordStore

logger = logging.getLogger("marketplace.offers")


@dataclass
class OfferServices:
    """Process-wide wiring: one cache and one telemetry recorder shared by all."""

    store: RecordStore
    gateway: StoreGateway
    cache: OfferCache
    telemetry: OfferTelemetry
    notifications: NotificationSink
    roles: OfferRoleResolver
    timeline: OfferTimeline
    lifecycle: OfferLifecycle
    tasks: OfferTaskManager
    documents: OfferDocumentManager
    formal_requests: OfferFormalRequestManager
    communications: OfferCommunicationManager
    realtime_enabled: bool = True

    def dispatcher(self) -> OfferRealtimeDispatcher:
        return OfferRealtimeDispatcher(
            self.store,
            notifications=self.notifications,
            telemetry=self.telemetry,
            enabled=self.realtime_enabled,
        )

    def workspace(self, identity: Identity, offer_id: str) -> OfferWorkspace:
        return OfferWorkspace(self, identity, offer_id)

    def reset(self) -> None:
        """Drop cached entries and counters (tests, admin reset)."""

        self.cache.clear()
        self.telemetry.reset()


def build_offer_services(
    store: RecordStore,
    *,
    cache_ttl_seconds: float = 300.0,
    cache_max_entries: int = 10,
    telemetry_event_window: int = 100,
    realtime_enabled: bool = True,
    notifications: Optional[NotificationSink] = None,
    cache: Optional[OfferCache] = None,
    telemetry: Optional[OfferTelemetry] = None,
) -> OfferServices:
    telemetry = telemetry or OfferTelemetry(event_window=telemetry_event_window)
    cache = cache or OfferCache(ttl_seconds=cache_ttl_seconds, max_entries=cache_max_entries)
    gateway = StoreGateway(store, telemetry)
    roles = OfferRoleResolver(gateway)
    timeline = OfferTimeline(gateway, telemetry=telemetry)
    parts = {"gateway": gateway, "roles": roles, "timeline": timeline, "cache": cache}

    services = OfferServices(
        store=store,
        gateway=gateway,
        cache=cache,
        telemetry=telemetry,
        notifications=notifications if notifications is not None else NotificationFeed(),
        roles=roles,
        timeline=timeline,
        lifecycle=OfferLifecycle(**parts),
        tasks=OfferTaskManager(**parts),
        documents=OfferDocumentManager(**parts),
        formal_requests=OfferFormalRequestManager(**parts),
        communications=OfferCommunicationManager(**parts),
        realtime_enabled=realtime_enabled,
    )
    logger.info(
        "offer_services_built",
        extra={
            "store": type(store).__name__,
            "cache_ttl_seconds": cache_ttl_seconds,
            "cache_max_entries": cache_max_entries,
            "realtime_enabled": realtime_enabled,
        },
    )
    return services
