#!/usr/bin/env python3
"""
MongoDB Manager for WalletChat
Persists the append-only conversation log. Only message text, role and the
classified intent type are ever written.
"""

from typing import List, Optional

from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.mongo_client import MongoClient
from pymongo.server_api import ServerApi

from walletchat.schemas.core import ConversationRecord
from .config import settings
from .logger import get_logger

logger = get_logger("mongodb_manager")


class MongoDBManager:
    """MongoDB connection and conversation log operations."""

    def __init__(self, mongodb_url: Optional[str] = None, database: Optional[str] = None):
        self.mongodb_url = mongodb_url if mongodb_url is not None else settings.mongodb_url
        self.database = database or settings.mongodb_database
        self.client: Optional[MongoClient] = None
        self.db: Optional[Database] = None
        self.connected: bool = False
        self._connect()

    def _connect(self):
        """Connect to MongoDB; stays disconnected when no server is configured."""
        try:
            if not self.mongodb_url or self.mongodb_url == "mongodb://localhost:27017":
                logger.warning("MongoDB URL not configured, using local fallback")
                return

            if "<db_password>" in self.mongodb_url:
                logger.warning("MongoDB password placeholder found - please replace <db_password> with actual password")
                return

            self.client = MongoClient(self.mongodb_url, server_api=ServerApi('1'),
                                      serverSelectionTimeoutMS=5000)

            # Test connection
            self.client.admin.command('ping')

            self.db = self.client[self.database]
            self.connected = True
            self._create_indexes()

            logger.info(f"✅ Connected to MongoDB database: {self.database}")

        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            logger.info("App will continue without MongoDB features")
            self.connected = False

    def _create_indexes(self):
        if not self.connected or self.db is None:
            return

        try:
            conversations = self.db.conversations
            conversations.create_index([("conversation_id", ASCENDING)])
            conversations.create_index([("conversation_id", ASCENDING), ("timestamp", ASCENDING)])
            logger.info("✅ Database indexes created successfully")
        except Exception as e:
            logger.warning(f"Failed to create database indexes: {e}")

    def is_connected(self) -> bool:
        """Check if MongoDB is connected."""
        return self.connected

    async def save_record(self, record: ConversationRecord) -> Optional[str]:
        """Append one conversation record."""
        if not self.connected or self.db is None:
            return None

        try:
            result = self.db.conversations.insert_one(record.model_dump())
            logger.debug(f"Saved {record.role} record for conversation {record.conversation_id}")
            return str(result.inserted_id)
        except Exception as e:
            logger.error(f"Failed to save conversation record: {e}")
            return None

    async def get_records(self, conversation_id: str, limit: int = 100) -> List[ConversationRecord]:
        """Records of a conversation in chronological order."""
        if not self.connected or self.db is None:
            return []

        try:
            cursor = self.db.conversations.find(
                {"conversation_id": conversation_id}
            ).sort("timestamp", ASCENDING).limit(limit)

            records = []
            for doc in cursor:
                doc.pop("_id", None)
                records.append(ConversationRecord(**doc))
            return records
        except Exception as e:
            logger.error(f"Failed to get conversation records: {e}")
            return []

    async def delete_conversation(self, conversation_id: str) -> int:
        if not self.connected or self.db is None:
            return 0

        try:
            result = self.db.conversations.delete_many({"conversation_id": conversation_id})
            return result.deleted_count
        except Exception as e:
            logger.error(f"Failed to delete conversation: {e}")
            return 0

    def close(self):
        if self.client is not None:
            self.client.close()
            self.connected = False
            logger.info("MongoDB connection closed")


# Global instance
mongodb_manager = MongoDBManager()
