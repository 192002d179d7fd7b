"""In-process event queue with registered consumers."""
import queue
import threading
from typing import Any, Callable, Dict, Optional

from prometheus_client import Counter
from uuid_extensions import uuid7

from journey_service.config import config
from journey_service.logging_config import get_logger

logger = get_logger(__name__)

events_published_total = Counter(
    "journey_events_published_total",
    "Events accepted by the event queue",
)
events_dropped_total = Counter(
    "journey_events_dropped_total",
    "Events rejected because the queue was full",
)
consumer_errors_total = Counter(
    "journey_event_consumer_errors_total",
    "Consumer callbacks that raised while handling an event",
)

EventConsumer = Callable[[Dict[str, Any]], Any]


class EventQueue:
    """
    Fan-out event channel.

    Published events are buffered in a queue and delivered to every
    registered consumer in registration order, either synchronously through
    dispatch_pending() or by a background dispatcher thread.
    """

    def __init__(self, max_size: Optional[int] = None, poll_timeout: Optional[float] = None):
        self.max_size = config.events.max_size if max_size is None else max_size
        self.poll_timeout = config.events.poll_timeout if poll_timeout is None else poll_timeout
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=self.max_size)
        self._consumers: Dict[str, EventConsumer] = {}
        self._consumers_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def register_consumer(self, callback: EventConsumer) -> str:
        """
        Register a consumer callback.

        Returns:
            Handle to pass to unregister_consumer()
        """
        handle = str(uuid7())
        with self._consumers_lock:
            self._consumers[handle] = callback
        logger.info("Event consumer registered", handle=handle)
        return handle

    def unregister_consumer(self, handle: str) -> bool:
        with self._consumers_lock:
            removed = self._consumers.pop(handle, None) is not None
        if removed:
            logger.info("Event consumer unregistered", handle=handle)
        return removed

    def consumer_count(self) -> int:
        with self._consumers_lock:
            return len(self._consumers)

    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, event: Dict[str, Any]) -> bool:
        """
        Enqueue an event without blocking.

        Returns:
            False if the queue is full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            events_dropped_total.inc()
            logger.warning(
                "Event queue full, event dropped",
                event_name=event.get("event"),
                max_size=self.max_size,
            )
            return False

        events_published_total.inc()
        logger.debug("Event published", event_name=event.get("event"))
        return True

    def dispatch_pending(self) -> int:
        """Deliver every queued event. Returns the number of events delivered."""
        delivered = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            self._deliver(event)
            delivered += 1

    def _deliver(self, event: Dict[str, Any]) -> None:
        with self._consumers_lock:
            consumers = list(self._consumers.items())

        try:
            for handle, callback in consumers:
                try:
                    callback(event)
                except Exception:
                    consumer_errors_total.inc()
                    logger.exception(
                        "Event consumer failed",
                        handle=handle,
                        event_name=event.get("event"),
                    )
        finally:
            self._queue.task_done()

    def _run(self) -> None:
        logger.info("Event dispatcher started")

        while not self._stop_event.is_set():
            try:
                event = self._queue.get(timeout=self.poll_timeout)
            except queue.Empty:
                continue
            self._deliver(event)

        logger.info("Event dispatcher stopped")

    def start(self) -> None:
        """Start the background dispatcher thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("Event dispatcher already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="EventDispatcher",
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the dispatcher thread. Events still queued stay queued."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def join(self) -> None:
        """Block until every published event has been delivered."""
        self._queue.join()
