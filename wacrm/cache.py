"""
Redis caching utilities for chat lists, message history and bot context
"""
import json
import logging
import os
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

# TTLs in seconds
CHAT_LIST_TTL = 30
RECENT_MESSAGES_TTL = 60
BOT_CONTEXT_TTL = 450
INVOICE_TEMPLATE_IMAGE_TTL = 3600


def redis_configured() -> bool:
    return bool(os.getenv("REDIS_URL") or os.getenv("REDIS_HOST"))


def get_redis_client() -> redis.Redis:
    """
    Get or create the Redis client
    Uses REDIS_URL when set, otherwise the individual REDIS_* settings
    """
    global redis_client

    if redis_client is None:
        redis_url = os.getenv("REDIS_URL")
        common = {
            "decode_responses": True,
            "socket_connect_timeout": 5,
            "socket_timeout": 10,
            "retry_on_timeout": True,
            "health_check_interval": 30,
            "max_connections": 20,
        }

        if redis_url:
            masked_url = redis_url.split("@")[-1] if "@" in redis_url else "****"
            logger.info(f"Using Redis URL connection: ****@{masked_url}")
            client = redis.from_url(redis_url, **common)
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"
            logger.info(f"Using Redis at {redis_host}:{redis_port} (SSL: {redis_ssl})")
            client = redis.Redis(
                host=redis_host,
                port=redis_port,
                password=os.getenv("REDIS_PASSWORD", None),
                db=int(os.getenv("REDIS_DB", "0")),
                ssl=redis_ssl,
                **common,
            )

        try:
            client.ping()
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise
        redis_client = client
        logger.info("Redis connected successfully")

    return redis_client


class Cache:
    """Redis cache wrapper with JSON serialization. Never raises."""

    def __init__(self):
        self.redis_client = None

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            if not redis_configured():
                return None
            try:
                self.redis_client = get_redis_client()
            except Exception as e:
                logger.warning(f"Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (default 1 hour)"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value, default=str))
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        client = self._get_client()
        if not client:
            return False

        try:
            client.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g., 'recent_messages:12:*')"""
        client = self._get_client()
        if not client:
            return 0

        try:
            keys = list(client.scan_iter(match=pattern))
            if keys:
                deleted = client.delete(*keys)
                logger.debug(f"Cache DELETE pattern: {pattern} ({deleted} keys)")
                return deleted
            return 0
        except Exception as e:
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0

    def ping(self) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            return bool(client.ping())
        except Exception as e:
            logger.error(f"Redis ping failed: {e}")
            return False


# Global cache instance
cache = Cache()


# Cache key builders

def chat_list_key(agent_id) -> str:
    return f"chat_list:{agent_id}"


def recent_messages_key(agent_id, customer_id) -> str:
    return f"recent_messages:{agent_id}:{customer_id}"


def bot_context_key(agent_id, customer_id) -> str:
    return f"bot_context:{agent_id}:{customer_id}"


INVOICE_TEMPLATE_IMAGE_KEY = "invoice_template_image"


def invalidate_conversation_cache(agent_id, customer_id) -> None:
    """Drop cached chat list and message history after a message changes"""
    cache.delete(chat_list_key(agent_id))
    cache.delete(recent_messages_key(agent_id, customer_id))


def invalidate_customer_cache(agent_id, customer_id) -> None:
    """Drop everything cached about one customer"""
    invalidate_conversation_cache(agent_id, customer_id)
    cache.delete(bot_context_key(agent_id, customer_id))
