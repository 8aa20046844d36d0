# backend/init_db.py
import asyncio
import logging

from config import settings
from database import PrimaryStore, create_engine_from_settings
from clickhouse_store import SecondaryStore
from errors import SecondaryStoreError

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

async def init_db():
    primary = PrimaryStore(create_engine_from_settings())
    try:
        await primary.create_all()
        print("PostgreSQL tables created successfully!")
    finally:
        await primary.dispose()

    if not settings.CLICKHOUSE_ENABLED:
        return

    secondary = SecondaryStore.from_settings()
    try:
        await secondary.create_tables()
        print("ClickHouse tables created successfully!")
    except SecondaryStoreError as e:
        logger.warning(f"ClickHouse initialization failed, will use PostgreSQL only: {e}")
    finally:
        await secondary.close()

if __name__ == "__main__":
    asyncio.run(init_db())
