import json
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import pika
from .config import rabbitmq_config

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """Hands settlement notification messages to the notifier via RabbitMQ"""

    def __init__(self):
        self.connection: Optional[pika.BlockingConnection] = None
        self.channel = None

    def _create_connection(self) -> pika.BlockingConnection:
        parameters = pika.URLParameters(rabbitmq_config.url)
        parameters.heartbeat = rabbitmq_config.heartbeat
        parameters.blocked_connection_timeout = rabbitmq_config.blocked_connection_timeout
        return pika.BlockingConnection(parameters)

    def connect(self) -> None:
        """Establish connection to RabbitMQ and declare the notification exchange"""
        try:
            self.connection = self._create_connection()
            self.channel = self.connection.channel()
            self.channel.exchange_declare(
                exchange=rabbitmq_config.notification_exchange,
                exchange_type="topic",
                durable=True
            )
            logger.info("RabbitMQ producer connected successfully")
        except Exception as e:
            logger.error(f"Failed to connect RabbitMQ producer: {e}")
            raise

    def disconnect(self) -> None:
        """Close RabbitMQ connection"""
        if self.channel and not self.channel.is_closed:
            self.channel.close()
        if self.connection and not self.connection.is_closed:
            self.connection.close()
        logger.info("RabbitMQ producer disconnected")

    def publish_settlement_notification(self, message: Dict[str, Any]) -> bool:
        """
        Publish a settlement summary for the notification service

        Args:
            message: JSON-serializable settlement notification

        Returns:
            bool: True if message published successfully, False otherwise
        """
        try:
            if not self.connection or self.connection.is_closed:
                self.connect()

            body = {**message, "timestamp": datetime.now(timezone.utc).isoformat()}

            self.channel.basic_publish(
                exchange=rabbitmq_config.notification_exchange,
                routing_key=rabbitmq_config.settlement_notification_key,
                body=json.dumps(body),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Make message persistent
                    content_type='application/json',
                    correlation_id=message.get("settlement_id") or message.get("group_id")
                )
            )

            logger.info(f"Published settlement notification for group {message.get('group_id')}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish settlement notification: {e}")
            return False


# Global producer instance
_rabbitmq_producer: Optional[RabbitMQProducer] = None


def get_rabbitmq_producer() -> RabbitMQProducer:
    """Get or create RabbitMQ producer instance; connects lazily on first publish"""
    global _rabbitmq_producer
    if _rabbitmq_producer is None:
        _rabbitmq_producer = RabbitMQProducer()
    return _rabbitmq_producer


def close_rabbitmq_producer() -> None:
    """Close RabbitMQ producer connection"""
    global _rabbitmq_producer
    if _rabbitmq_producer:
        _rabbitmq_producer.disconnect()
        _rabbitmq_producer = None
