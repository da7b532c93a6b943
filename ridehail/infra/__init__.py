# ridehail/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: PostgreSQL, Redis, RabbitMQ.
"""

from ridehail.infra.database import DatabaseManager, get_db
from ridehail.infra.event_bus import DomainEvent, EventBus, EventTypes, get_event_bus
from ridehail.infra.redis_client import RedisClient, get_redis

__all__ = [
    "DatabaseManager",
    "get_db",
    "RedisClient",
    "get_redis",
    "DomainEvent",
    "EventBus",
    "EventTypes",
    "get_event_bus",
]
