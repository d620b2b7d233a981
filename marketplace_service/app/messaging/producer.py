import json

import pika
import structlog

from ..config import EVENTS_ENABLED, EVENTS_EXCHANGE, RABBITMQ_HOST

logger = structlog.get_logger(__name__)


class RabbitMQProducer:
    """
    Publishes domain events (e.g. 'order.placed') to a topic exchange.

    A connection is opened per publish and closed afterwards; events are only
    published after the database transaction that produced them has committed.
    """

    def __init__(self, host=RABBITMQ_HOST, exchange_name=EVENTS_EXCHANGE, exchange_type="topic"):
        self.host = host
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type

    def _connect(self):
        connection = pika.BlockingConnection(
            pika.ConnectionParameters(
                host=self.host,
                heartbeat=600,
                blocked_connection_timeout=300,
                connection_attempts=3,
                retry_delay=2,
            )
        )
        channel = connection.channel()
        # Declare the exchange (durable ensures it survives restarts)
        channel.exchange_declare(exchange=self.exchange_name, exchange_type=self.exchange_type, durable=True)
        return connection, channel

    def publish(self, routing_key: str, message: dict) -> bool:
        """Returns False when the broker could not be reached; the event is then dropped."""
        connection = None
        try:
            connection, channel = self._connect()
            channel.basic_publish(
                exchange=self.exchange_name,
                routing_key=routing_key,
                body=json.dumps(message, default=str),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Make message persistent
                    content_type="application/json",
                ),
            )
            logger.info("event.published", routing_key=routing_key)
            return True
        except pika.exceptions.AMQPError as exc:
            logger.error("event.publish_failed", routing_key=routing_key, error=str(exc))
            return False
        finally:
            if connection is not None and connection.is_open:
                connection.close()


class NullPublisher:
    """Used when events are disabled: records the event in the log only."""

    def publish(self, routing_key: str, message: dict) -> bool:
        logger.debug("event.skipped", routing_key=routing_key)
        return False


def get_event_publisher():
    """FastAPI dependency returning the configured publisher."""
    if EVENTS_ENABLED:
        return RabbitMQProducer()
    return NullPublisher()
