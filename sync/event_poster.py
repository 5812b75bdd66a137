import logging
import queue
import threading
from typing import Any, Dict, List, Optional

import requests

from cv.errors import ErrorKind
from cv.types import TrackingEvent

logger = logging.getLogger(__name__)


class EventPoster:
    """Background poster that batches tracking events and sends them to an HTTP endpoint.

    Usage:
        poster = EventPoster("http://localhost:8000/api/tryon/events")
        poster.start()
        session.subscribe(poster.send_event)
        ...
        poster.stop()
    """

    def __init__(self, url: Optional[str], batch_interval: float = 0.1, max_batch: int = 200,
                 max_queue: int = 1000, timeout: float = 3.0):
        self.url = url
        self._q: queue.Queue = queue.Queue(maxsize=max(1, int(max_queue)))
        self._thr: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.batch_interval = float(batch_interval)
        self.max_batch = int(max_batch)
        self.timeout = float(timeout)
        self.sent = 0
        self.dropped = 0
        self.failed_batches = 0

    def start(self) -> None:
        if not self.url:
            return
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = threading.Thread(target=self._run, daemon=True)
        self._thr.start()

    def send(self, obj: Dict[str, Any]) -> None:
        if not self.url:
            return
        try:
            self._q.put_nowait(obj)
        except queue.Full:
            self.dropped += 1

    def send_event(self, ev: TrackingEvent) -> None:
        self.send(ev.to_dict())

    def send_error(self, kind: ErrorKind, exc: Exception) -> None:
        self.send({"type": "error", "kind": kind.value, "error": str(exc)})

    def _drain(self, first: Dict[str, Any]) -> List[Dict[str, Any]]:
        batch = [first]
        while len(batch) < self.max_batch:
            try:
                batch.append(self._q.get_nowait())
            except queue.Empty:
                break
        return batch

    def _post(self, batch: List[Dict[str, Any]]) -> None:
        payload = {"type": "batch", "events": batch}
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout)
            if resp.status_code >= 400:
                self.failed_batches += 1
                logger.warning("Event push rejected: HTTP %s", resp.status_code)
                return
            self.sent += len(batch)
        except requests.RequestException as exc:
            self.failed_batches += 1
            logger.warning("Event push failed: %s", exc)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                ev = self._q.get(timeout=self.batch_interval)
            except queue.Empty:
                continue
            self._post(self._drain(ev))

    def flush(self) -> None:
        """Post whatever is queued from the calling thread."""
        while True:
            try:
                ev = self._q.get_nowait()
            except queue.Empty:
                return
            self._post(self._drain(ev))

    def stop(self) -> None:
        self._stop.set()
        if self._thr:
            self._thr.join(timeout=1.0)
            self._thr = None
