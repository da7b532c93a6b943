# ridehail/infra/redis_client.py
"""
Клиент Redis для geo-индекса доступных водителей.
"""

from __future__ import annotations

import redis.asyncio as redis

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import get_logger, log_error, log_info

logger = get_logger("redis")


class RedisClient:
    """
    Асинхронный клиент Redis.
    Все ключи автоматически получают префикс namespace.
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "ridehail"

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    def _make_key(self, key: str) -> str:
        """Добавляет namespace к ключу."""
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str | None = None,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis (если None, берётся из конфига)
            max_connections: Максимальное количество соединений
            namespace: Префикс ключей
        """
        if self._client is not None:
            return

        if url is None:
            from ridehail.config import settings
            url = settings.redis.url
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            namespace = settings.redis.REDIS_NAMESPACE

        if namespace:
            self._namespace = namespace

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # GEO ОПЕРАЦИИ
    # =========================================================================

    async def geoadd(
        self,
        key: str,
        longitude: float,
        latitude: float,
        member: str,
    ) -> int:
        """
        Добавляет или обновляет геолокацию участника.

        Returns:
            Количество добавленных элементов (0 при обновлении)
        """
        return await self.client.geoadd(
            self._make_key(key),
            (longitude, latitude, member),
        )

    async def geopos(
        self,
        key: str,
        member: str,
    ) -> tuple[float, float] | None:
        """
        Получает позицию участника.

        Returns:
            (longitude, latitude) или None
        """
        result = await self.client.geopos(self._make_key(key), member)
        if result and result[0]:
            return result[0]
        return None

    async def georadius(
        self,
        key: str,
        longitude: float,
        latitude: float,
        radius: float,
        unit: str = "km",
        count: int | None = None,
        sort: str = "ASC",
    ) -> list[tuple[str, float]]:
        """
        Ищет участников в радиусе от точки.

        Args:
            key: Ключ
            longitude: Долгота центра
            latitude: Широта центра
            radius: Радиус поиска
            unit: Единица измерения (km, m, mi, ft)
            count: Максимальное количество результатов
            sort: Сортировка (ASC, DESC)

        Returns:
            Список кортежей (member, distance)
        """
        results = await self.client.georadius(
            self._make_key(key),
            longitude,
            latitude,
            radius,
            unit=unit,
            withdist=True,
            count=count,
            sort=sort,
        )
        return [(r[0], float(r[1])) for r in results]

    async def georem(self, key: str, member: str) -> int:
        """Удаляет участника из geo-индекса."""
        return await self.client.zrem(self._make_key(key), member)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """Проверяет здоровье подключения к Redis."""
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


def get_redis() -> RedisClient:
    """Возвращает глобальный экземпляр RedisClient."""
    return RedisClient()


async def init_redis() -> None:
    """Инициализирует подключение к Redis по настройкам из конфигурации."""
    from ridehail.config import settings

    redis_client = get_redis()
    await redis_client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )


async def close_redis() -> None:
    """Закрывает подключение к Redis."""
    redis_client = get_redis()
    await redis_client.disconnect()
