# ridehail/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (RIDEHAIL_CONFIG переопределяет)."""
    override = os.getenv("RIDEHAIL_CONFIG")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "ridehail"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ridehail"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "ridehail"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ (шина уведомлений)."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "ridehail.events"

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class FareRate(BaseModel):
    """Тариф одного класса поездки."""
    base: float = Field(..., ge=0.0)
    per_km: float = Field(..., ge=0.0)
    minimum_fare: float = Field(..., ge=0.0)


def _default_fare_rates() -> dict[str, FareRate]:
    return {
        "economy": FareRate(base=50, per_km=20, minimum_fare=100),
        "premium": FareRate(base=80, per_km=30, minimum_fare=150),
        "luxury": FareRate(base=120, per_km=40, minimum_fare=200),
    }


class FareSettings(BaseModel):
    """Настройки тарифов и оценки поездки."""
    FARE_RATES: dict[str, FareRate] = Field(default_factory=_default_fare_rates)
    AVERAGE_SPEED_KMH: float = Field(30.0, gt=0.0)
    CURRENCY: str = "BDT"


class MatchingSettings(BaseModel):
    """Настройки подбора водителей."""
    DEFAULT_SEARCH_RADIUS_KM: float = Field(10.0, gt=0.0)
    MAX_NEARBY_DRIVERS: int = Field(10, ge=1)
    AUTO_MATCH_ON_REQUEST: bool = True


class ApiSettings(BaseModel):
    """Настройки HTTP-границы."""
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8085


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    fares: FareSettings = Field(default_factory=FareSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Раскладывает плоский словарь config.json по секциям.
        Хосты и секреты переопределяются из переменных окружения.

        Args:
            data: Содержимое config.json

        Returns:
            Объект настроек
        """
        def pick(section: type[BaseModel], env_keys: tuple[str, ...] = ()) -> dict[str, Any]:
            values = {name: data[name] for name in section.model_fields if name in data}
            for key in env_keys:
                env_value = os.getenv(key)
                if env_value:
                    values[key] = env_value
            return values

        return cls(
            system=SystemSettings(**pick(SystemSettings, ("ENVIRONMENT",))),
            logging=LoggingSettings(**pick(LoggingSettings, ("LOG_LEVEL",))),
            database=DatabaseSettings(
                **pick(DatabaseSettings, ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"))
            ),
            redis=RedisSettings(**pick(RedisSettings, ("REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD"))),
            rabbitmq=RabbitMQSettings(
                **pick(RabbitMQSettings, ("RABBITMQ_HOST", "RABBITMQ_PORT", "RABBITMQ_USER", "RABBITMQ_PASSWORD"))
            ),
            fares=FareSettings(**pick(FareSettings)),
            matching=MatchingSettings(**pick(MatchingSettings)),
            api=ApiSettings(**pick(ApiSettings, ("API_HOST", "API_PORT"))),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт объект Settings из config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
