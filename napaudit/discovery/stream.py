"""One discovery pipeline, delivered live as events or buffered into a single payload."""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import requests

from napaudit.core.config import Settings
from napaudit.core.models import ReferenceRecord
from napaudit.discovery.aggregate import build_snapshot
from napaudit.discovery.retrieval import DiscoveryResult, DiscoveryRunner

logger = logging.getLogger(__name__)

_END = object()


class PipelineError(RuntimeError):
    """The discovery pipeline ended with a ``fatal`` event."""


@dataclass(frozen=True)
class DiscoveryEvent:
    name: str
    data: Dict[str, Any] = field(default_factory=dict)


class EventChannel:
    """Thread-safe event sink; optionally buffers and forwards to a listener."""

    def __init__(self, listener: Optional[Callable[[DiscoveryEvent], None]] = None, buffer: bool = True) -> None:
        self._lock = threading.Lock()
        self._listener = listener
        self._buffer = buffer
        self.events: List[DiscoveryEvent] = []

    def emit(self, name: str, data: Dict[str, Any]) -> None:
        event = DiscoveryEvent(name, data)
        with self._lock:
            if self._buffer:
                self.events.append(event)
            if self._listener is not None:
                self._listener(event)

    def last(self, name: str) -> Optional[DiscoveryEvent]:
        with self._lock:
            for event in reversed(self.events):
                if event.name == name:
                    return event
        return None


def format_sse(event: DiscoveryEvent) -> str:
    return f"event: {event.name}\ndata: {json.dumps(event.data, default=str)}\n\n"


def resolve_reference(store: Any, business_id: Optional[str], audit_id: Optional[str]) -> Tuple[str, ReferenceRecord]:
    """Resolve the business and load its reference record; raises on missing ids or rows."""
    if not business_id and audit_id:
        business_id = store.resolve_business_id(audit_id)
    if not business_id:
        raise ValueError("Missing businessId or auditId")
    return business_id, store.get_reference_record(business_id)


def run_discovery_pipeline(
    reference: ReferenceRecord,
    settings: Settings,
    store: Any,
    emit: Callable[[str, Dict[str, Any]], None],
    *,
    business_id: Optional[str] = None,
    audit_id: Optional[str] = None,
    cancel: Optional[threading.Event] = None,
    session: Optional[requests.Session] = None,
    include_website: bool = False,
    runner_factory: Callable[..., DiscoveryRunner] = DiscoveryRunner,
) -> Optional[DiscoveryResult]:
    """Run discovery, persist the snapshot and finish with ``done`` or ``fatal``."""
    try:
        runner = runner_factory(
            reference,
            settings,
            emit=emit,
            cancel=cancel,
            session=session,
            include_website=include_website,
        )
        result = runner.run()
        if audit_id:
            snapshot = build_snapshot(result.queries, result.outcome.selected, provider=result.provider)
            store.insert_snapshot(business_id or reference.business_id, audit_id, "manual", {"discovery": snapshot})
            emit("snapshot:saved", {"auditId": audit_id, "count": len(result.outcome.selected)})
        emit("done", {"total": len(result.outcome.selected)})
        return result
    except Exception as exc:  # noqa: BLE001
        logger.exception("Discovery pipeline failed")
        emit("fatal", {"error": str(exc) or "unknown"})
        return None


def collect_discovery(
    settings: Settings,
    store: Any,
    *,
    business_id: Optional[str] = None,
    audit_id: Optional[str] = None,
    session: Optional[requests.Session] = None,
    include_website: bool = False,
    runner_factory: Callable[..., DiscoveryRunner] = DiscoveryRunner,
) -> Dict[str, Any]:
    """Batch adapter: run the pipeline to completion and return ``{provider, urls}``."""
    business_id, reference = resolve_reference(store, business_id, audit_id)
    channel = EventChannel()
    result = run_discovery_pipeline(
        reference,
        settings,
        store,
        channel.emit,
        business_id=business_id,
        audit_id=audit_id,
        session=session,
        include_website=include_website,
        runner_factory=runner_factory,
    )
    if result is None:
        fatal = channel.last("fatal")
        raise PipelineError(fatal.data.get("error") if fatal else "unknown")
    return {"provider": result.provider, "urls": [group.to_dict() for group in result.outcome.selected]}


def stream_discovery(
    reference: ReferenceRecord,
    settings: Settings,
    store: Any,
    *,
    business_id: Optional[str] = None,
    audit_id: Optional[str] = None,
    session: Optional[requests.Session] = None,
    include_website: bool = False,
    runner_factory: Callable[..., DiscoveryRunner] = DiscoveryRunner,
) -> Iterator[DiscoveryEvent]:
    """Live adapter: yield events as the pipeline produces them.

    Closing the generator (a client disconnect) sets the cancel event; the
    worker thread then stops issuing new requests and winds down.
    """
    events: "queue.Queue[Any]" = queue.Queue()
    cancel = threading.Event()
    channel = EventChannel(listener=events.put, buffer=False)

    def work() -> None:
        try:
            run_discovery_pipeline(
                reference,
                settings,
                store,
                channel.emit,
                business_id=business_id,
                audit_id=audit_id,
                cancel=cancel,
                session=session,
                include_website=include_website,
                runner_factory=runner_factory,
            )
        finally:
            events.put(_END)

    worker = threading.Thread(target=work, name="discovery-stream", daemon=True)
    worker.start()
    try:
        while True:
            event = events.get()
            if event is _END:
                break
            yield event
    finally:
        cancel.set()
