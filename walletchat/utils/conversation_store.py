#!/usr/bin/env python3
"""
Conversation Store
Append-only persistence of conversation records, in MongoDB when it is
connected and in a local in-process cache otherwise.
"""

from typing import Dict, List, Optional

from walletchat.schemas.core import ConversationRecord
from .config import settings
from .logger import get_logger
from .mongodb_manager import MongoDBManager, mongodb_manager

logger = get_logger("conversation_store")


class ConversationStore:
    """Saves and loads conversation records."""

    def __init__(self, mongodb: Optional[MongoDBManager] = None, cache_limit: Optional[int] = None):
        self.mongodb = mongodb or mongodb_manager
        self.cache_limit = cache_limit or settings.history_cache_limit
        self.local_cache: Dict[str, List[ConversationRecord]] = {}  # Fallback if MongoDB is unavailable

    async def save_message(self, conversation_id: str, role: str, content: str,
                           intent_type: Optional[str] = None) -> bool:
        """Append one message to the conversation log."""
        record = ConversationRecord(conversation_id=conversation_id, role=role,
                                    content=content, intent_type=intent_type)
        try:
            if self.mongodb.is_connected():
                result = await self.mongodb.save_record(record)
                if result:
                    logger.debug(f"Saved message to MongoDB for conversation {conversation_id}")
                    return True

            records = self.local_cache.setdefault(conversation_id, [])
            records.append(record)

            # Keep only the most recent records locally
            if len(records) > self.cache_limit:
                self.local_cache[conversation_id] = records[-self.cache_limit:]

            logger.debug(f"Saved message to local cache for conversation {conversation_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to save message: {e}")
            return False

    async def load_history(self, conversation_id: str, limit: Optional[int] = None) -> List[ConversationRecord]:
        """Records of ``conversation_id`` in chronological order."""
        limit = limit or self.cache_limit
        if self.mongodb.is_connected():
            records = await self.mongodb.get_records(conversation_id, limit)
            if records:
                return records
        return list(self.local_cache.get(conversation_id, []))[-limit:]

    async def clear(self, conversation_id: str):
        self.local_cache.pop(conversation_id, None)
        if self.mongodb.is_connected():
            await self.mongodb.delete_conversation(conversation_id)
