"""Change notifications for slots and bookings.

A ``ChangeBroadcaster`` lives on each app (``app.state.notifier``). Listeners in the
same process subscribe to it directly; ``RabbitMQForwarder`` relays every event to a
durable queue so other processes can refresh their views.
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, List

import pika
from pika.exceptions import AMQPError

from .clock import utcnow
from .config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    action: str
    record_id: str
    revision: int
    occurred_at: datetime = field(default_factory=utcnow)

    def to_json(self) -> str:
        payload = asdict(self)
        payload["occurred_at"] = self.occurred_at.isoformat()
        return json.dumps(payload)


Listener = Callable[[ChangeEvent], None]


class ChangeBroadcaster:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._revision = 0

    @property
    def revision(self) -> int:
        return self._revision

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, table: str, action: str, record_id: str) -> ChangeEvent:
        with self._lock:
            self._revision += 1
            event = ChangeEvent(table=table, action=action, record_id=record_id, revision=self._revision)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # listeners never fail the publisher
                logger.exception("Change listener %r failed for %s/%s", listener, table, action)
        return event


class RabbitMQForwarder:
    """Publishes each event as a persistent JSON message on a durable queue."""

    def __init__(self, url: str, queue: str, timeout: float) -> None:
        self.queue = queue
        self.parameters = pika.URLParameters(url)
        self.parameters.socket_timeout = timeout
        self.parameters.blocked_connection_timeout = timeout
        self.parameters.connection_attempts = 1

    def __call__(self, event: ChangeEvent) -> None:
        try:
            connection = pika.BlockingConnection(self.parameters)
        except AMQPError as exc:
            logger.warning("[RabbitMQ] Could not connect, dropping %s/%s: %s", event.table, event.action, exc)
            return
        try:
            channel = connection.channel()
            channel.queue_declare(queue=self.queue, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=self.queue,
                body=event.to_json(),
                properties=pika.BasicProperties(delivery_mode=2, content_type="application/json"),
            )
            logger.info("[RabbitMQ] Sent %s/%s revision=%s", event.table, event.action, event.revision)
        except AMQPError as exc:
            logger.error("[RabbitMQ] Publish failed for %s/%s: %s", event.table, event.action, exc)
        finally:
            if connection.is_open:
                connection.close()


def build_notifier(settings: Settings) -> ChangeBroadcaster:
    notifier = ChangeBroadcaster()
    if settings.rabbitmq_url:
        notifier.subscribe(
            RabbitMQForwarder(settings.rabbitmq_url, settings.rabbitmq_queue, settings.rabbitmq_timeout_seconds)
        )
    return notifier
