#!/usr/bin/env python3
# create_db.py
"""
Создаёт базу данных, если её нет, и применяет migrations/init.sql.
"""

import asyncio

import asyncpg

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_error, log_info, setup_logging
from ridehail.config import settings
from ridehail.infra.database import close_db, init_db


async def create_db() -> None:
    db_name = settings.database.DB_NAME

    # Подключаемся к служебной БД postgres, чтобы создать новую
    sys_conn = await asyncpg.connect(
        user=settings.database.DB_USER,
        password=settings.database.DB_PASSWORD,
        host=settings.database.DB_HOST,
        port=settings.database.DB_PORT,
        database="postgres",
    )
    try:
        exists = await sys_conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
        if not exists:
            await log_info(f"Создание базы данных {db_name}...", type_msg=TypeMsg.INFO)
            await sys_conn.execute(f'CREATE DATABASE "{db_name}"')
            await log_info("База данных создана", type_msg=TypeMsg.INFO)
        else:
            await log_info(f"База данных {db_name} уже существует", type_msg=TypeMsg.INFO)
    finally:
        await sys_conn.close()

    await init_db(apply_schema=True)
    await close_db()


async def main() -> None:
    setup_logging()
    try:
        await create_db()
    except (asyncpg.PostgresError, OSError) as e:
        await log_error(f"Не удалось подготовить базу данных: {e}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    asyncio.run(main())
