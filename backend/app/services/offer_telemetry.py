from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Deque, Literal, Optional

logger = logging.getLogger("marketplace.offers.telemetry")

LoadPhase = Literal["offer", "documents", "communications", "tasks", "timeline", "formal_requests", "total"]
TelemetryEventType = Literal["load", "cache", "error", "user_action", "api_call"]


@dataclass(frozen=True)
class TelemetrySnapshot:
    cache_hits: int = 0
    cache_misses: int = 0
    cache_hit_rate: float = 0.0
    api_calls: int = 0
    errors: int = 0
    retries: int = 0
    tab_switches: int = 0
    refresh_actions: int = 0
    load_durations_ms: dict[str, float] = field(default_factory=dict)
    session_start: float = 0.0
    last_activity: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TelemetryEvent:
    type: TelemetryEventType
    action: str
    timestamp: float
    duration_ms: Optional[float] = None
    success: bool = True
    metadata: Optional[dict[str, Any]] = None


Listener = Callable[[TelemetrySnapshot], None]


class OfferTelemetry:
    """Process-wide counters for the offer coordinator.

    A pure side channel: recording never raises, and a failing listener is
    logged and skipped.
    """

    def __init__(self, *, event_window: int = 100, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._event_window = int(event_window)
        self._listeners: list[Listener] = []
        self._events: Deque[TelemetryEvent] = deque(maxlen=self._event_window)
        now = self._clock()
        self._snapshot = TelemetrySnapshot(session_start=now, last_activity=now)

    def snapshot(self) -> TelemetrySnapshot:
        return replace(self._snapshot, load_durations_ms=dict(self._snapshot.load_durations_ms))

    def recent_events(self, count: int = 10) -> list[TelemetryEvent]:
        if count <= 0:
            return []
        return list(self._events)[-count:]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def record_load_time(self, phase: str, duration_ms: float) -> None:
        durations = dict(self._snapshot.load_durations_ms)
        durations[phase] = float(duration_ms)
        self._update(load_durations_ms=durations)
        self._add_event("load", f"load_{phase}", duration_ms=float(duration_ms))

    def record_cache_access(self, hit: bool) -> None:
        s = self._snapshot
        hits = s.cache_hits + (1 if hit else 0)
        misses = s.cache_misses + (0 if hit else 1)
        self._update(cache_hits=hits, cache_misses=misses, cache_hit_rate=hits / (hits + misses))
        self._add_event("cache", "cache_hit" if hit else "cache_miss", success=hit)

    def record_api_call(self, success: bool = True) -> None:
        s = self._snapshot
        self._update(api_calls=s.api_calls + 1, errors=s.errors + (0 if success else 1))
        self._add_event("api_call", "api_request", success=success)

    def record_error(self, error: BaseException, context: str | None = None, *, count: bool = True) -> None:
        """Log an error event; ``count=False`` when the failed call was already counted."""

        try:
            if count:
                self._update(errors=self._snapshot.errors + 1)
            self._add_event(
                "error",
                "error_occurred",
                success=False,
                metadata={
                    "type": type(error).__name__,
                    "code": getattr(error, "code", None),
                    "context": context,
                },
            )
        except Exception:
            logger.exception("telemetry_record_error_failed")

    def record_retry(self) -> None:
        self._update(retries=self._snapshot.retries + 1)
        self._add_event("user_action", "retry_attempt")

    def record_tab_switch(self, from_tab: str, to_tab: str) -> None:
        self._update(tab_switches=self._snapshot.tab_switches + 1, last_activity=self._clock())
        self._add_event("user_action", "tab_switch", metadata={"from_tab": from_tab, "to_tab": to_tab})

    def record_refresh(self) -> None:
        self._update(refresh_actions=self._snapshot.refresh_actions + 1, last_activity=self._clock())
        self._add_event("user_action", "manual_refresh")

    def reset(self) -> None:
        now = self._clock()
        self._snapshot = TelemetrySnapshot(session_start=now, last_activity=now)
        self._events.clear()
        self._notify()

    def _update(self, **changes: Any) -> None:
        self._snapshot = replace(self._snapshot, **changes)

    def _add_event(
        self,
        type_: TelemetryEventType,
        action: str,
        *,
        duration_ms: float | None = None,
        success: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._events.append(
            TelemetryEvent(
                type=type_,
                action=action,
                timestamp=self._clock(),
                duration_ms=duration_ms,
                success=success,
                metadata=metadata,
            )
        )
        self._notify()

    def _notify(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("telemetry_listener_failed")
