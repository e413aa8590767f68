"""
Database module for Webinar Engine Backend
Provides MongoDB connection and database instance
"""
from motor.motor_asyncio import AsyncIOMotorClient
from config import MONGO_URL, DB_NAME
import logging

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(MONGO_URL, tz_aware=True)
db = client[DB_NAME]

logger.info(f"✅ Database configured: {DB_NAME}")

async def close_db():
    """Close database connection"""
    client.close()


async def ensure_indexes():
    """Create indexes for frequently queried fields"""
    try:
        # Webinars indexes
        await db.webinars.create_index("id", unique=True)
        await db.webinars.create_index("slug", unique=True)
        await db.webinars.create_index([("scheduled_at", 1)])
        await db.webinars.create_index("attendees.user_id")

        # Reminder sweep: status + reminder flag + start time
        await db.webinars.create_index([("status", 1), ("reminder_sent", 1), ("scheduled_at", 1)])

        # Users indexes
        await db.users.create_index("id", unique=True)
        await db.users.create_index("email", unique=True)

        logger.info("✅ Database indexes created successfully")
    except Exception as e:
        logger.warning(f"⚠️ Error creating indexes (may already exist): {e}")
