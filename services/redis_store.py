"""Redis document store for the Guest Quota Gateway.

Layout (all keys carry the configured prefix):

* ``identity:<id>`` hash, ``identity:<id>:history`` list, ``identities:expiry`` zset
* ``session:<id>`` hash, ``sessions:expiry`` zset, ``identity:<id>:sessions`` and
  ``fingerprint:<fp>:sessions`` sets
* ``revoked:<sha256>`` string, ``revocations:expiry`` zset
* ``cache:entry:<key>`` hash, ``cache:index`` zset, ``cache:class:<class>`` sets

Times are stored as epoch milliseconds. Every record also gets a native
``PEXPIREAT`` a grace period after its own expiry, so Redis reclaims it even if
no sweep runs. Conditional updates are Lua scripts and run atomically on the
server.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, Pattern

import redis.asyncio as redis
from redis.exceptions import RedisError

from config import ApplicationConfig
from models import (
    CacheEntry,
    EndpointClass,
    Identity,
    RevokedToken,
    Session,
    UsageHistoryEntry,
    token_digest,
)
from utils import StoreUnavailable, create_contextual_logger, from_epoch_ms, log_exception, to_epoch_ms

from .store import ConsumeResult, DocumentStore

CONSUME_QUOTA_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return -1
end
local used = tonumber(redis.call('HGET', KEYS[1], 'quota_used'))
local limit = tonumber(redis.call('HGET', KEYS[1], 'quota_limit'))
local cost = tonumber(ARGV[1])
if used + cost > limit then
  return 0
end
redis.call('HINCRBY', KEYS[1], 'quota_used', cost)
if ARGV[2] ~= '' then
  redis.call('RPUSH', KEYS[2], ARGV[2])
  redis.call('LTRIM', KEYS[2], -tonumber(ARGV[3]), -1)
  local ttl = redis.call('PTTL', KEYS[1])
  if ttl > 0 then
    redis.call('PEXPIRE', KEYS[2], ttl)
  end
end
return 1
"""

RESET_IDENTITY_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return 0
end
if ARGV[5] ~= '1' then
  local expires = tonumber(redis.call('HGET', KEYS[1], 'expires_at'))
  if expires > tonumber(ARGV[1]) then
    return 0
  end
end
redis.call('HSET', KEYS[1], 'quota_used', 0, 'expires_at', ARGV[2])
redis.call('ZADD', KEYS[3], ARGV[2], ARGV[4])
redis.call('PEXPIREAT', KEYS[1], ARGV[3])
if redis.call('EXISTS', KEYS[2]) == 1 then
  redis.call('PEXPIREAT', KEYS[2], ARGV[3])
end
return 1
"""

HIT_CACHE_SCRIPT = """
local expires = redis.call('HGET', KEYS[1], 'expires_at')
if not expires then
  return nil
end
if tonumber(expires) <= tonumber(ARGV[1]) then
  return nil
end
redis.call('HINCRBY', KEYS[1], 'hits', 1)
redis.call('HSET', KEYS[1], 'last_accessed_at', ARGV[1])
return redis.call('HGETALL', KEYS[1])
"""


def _pairs_to_dict(values: List[Any]) -> Dict[str, str]:
    return {values[i]: values[i + 1] for i in range(0, len(values), 2)}


class RedisDocumentStore(DocumentStore):
    """Document store backed by Redis."""

    def __init__(self, config: ApplicationConfig) -> None:
        self.config = config
        self.prefix = config.redis_key_prefix
        self.grace = timedelta(seconds=config.native_expiry_grace_seconds)
        self.logger = create_contextual_logger(__name__, service="redis_store")
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._connected = False
        self._consume_script: Any = None
        self._reset_script: Any = None
        self._hit_script: Any = None

    async def connect(self) -> None:
        """Establish Redis connection and register scripts."""
        try:
            self._pool = redis.ConnectionPool(
                host=self.config.redis_host,
                port=self.config.redis_port,
                password=self.config.redis_password,
                db=self.config.redis_db,
                socket_timeout=self.config.redis_socket_timeout,
                retry_on_timeout=self.config.redis_retry_on_timeout,
                max_connections=self.config.redis_max_connections,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()

            self._consume_script = self._client.register_script(CONSUME_QUOTA_SCRIPT)
            self._reset_script = self._client.register_script(RESET_IDENTITY_SCRIPT)
            self._hit_script = self._client.register_script(HIT_CACHE_SCRIPT)
            self._connected = True

            self.logger.info(
                "Redis connection established successfully",
                serviceName="RedisDocumentStore",
                operationName="connect",
                host=self.config.redis_host,
                port=self.config.redis_port,
                db=self.config.redis_db,
                success=True,
            )
        except RedisError as e:
            self._connected = False
            log_exception(
                self.logger,
                e,
                "Redis connection failed: RedisDocumentStore.connect",
                serviceName="RedisDocumentStore",
                operationName="connect",
                host=self.config.redis_host,
                port=self.config.redis_port,
            )
            raise StoreUnavailable("connect", str(e)) from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._connected = False
            self.logger.info("Disconnected from Redis")

    async def is_healthy(self) -> bool:
        if not self._client or not self._connected:
            return False
        try:
            await self._client.ping()
            return True
        except RedisError:
            self._connected = False
            return False

    async def _ensure_connected(self) -> redis.Redis:
        if not self._client or not self._connected:
            await self.connect()
        if self._client is None:
            raise StoreUnavailable("connect", "Redis client is not initialized")
        return self._client

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        """Translate backend failures into StoreUnavailable."""
        try:
            yield
        except RedisError as e:
            log_exception(
                self.logger,
                e,
                f"Redis operation failed: {operation}",
                serviceName="RedisDocumentStore",
                operationName=operation,
            )
            raise StoreUnavailable(operation, str(e)) from e

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    def _native_expiry_ms(self, expires_at: datetime) -> int:
        return to_epoch_ms(expires_at + self.grace)

    # Identities

    def _identity_key(self, identity_id: str) -> str:
        return self._key("identity", identity_id)

    def _history_key(self, identity_id: str) -> str:
        return self._key("identity", identity_id, "history")

    @staticmethod
    def _identity_mapping(identity: Identity) -> Dict[str, Any]:
        return {
            "id": identity.id,
            "display_name": identity.display_name,
            "quota_used": identity.quota_used,
            "quota_limit": identity.quota_limit,
            "created_at": to_epoch_ms(identity.created_at),
            "expires_at": to_epoch_ms(identity.expires_at),
        }

    @staticmethod
    def _identity_from(raw: Dict[str, str], history: List[str]) -> Identity:
        return Identity(
            id=raw["id"],
            display_name=raw["display_name"],
            quota_used=int(raw["quota_used"]),
            quota_limit=int(raw["quota_limit"]),
            created_at=from_epoch_ms(int(raw["created_at"])),
            expires_at=from_epoch_ms(int(raw["expires_at"])),
            usage_history=[UsageHistoryEntry.model_validate_json(item) for item in history],
        )

    async def insert_identity(self, identity: Identity) -> None:
        client = await self._ensure_connected()
        key = self._identity_key(identity.id)
        history_key = self._history_key(identity.id)
        native = self._native_expiry_ms(identity.expires_at)

        async with self._guard("insert_identity"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(key, history_key)
                pipe.hset(key, mapping=self._identity_mapping(identity))
                pipe.pexpireat(key, native)
                if identity.usage_history:
                    pipe.rpush(history_key, *[e.model_dump_json() for e in identity.usage_history])
                    pipe.pexpireat(history_key, native)
                pipe.zadd(self._key("identities", "expiry"), {identity.id: to_epoch_ms(identity.expires_at)})
                await pipe.execute()

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        client = await self._ensure_connected()
        async with self._guard("get_identity"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.hgetall(self._identity_key(identity_id))
                pipe.lrange(self._history_key(identity_id), 0, -1)
                raw, history = await pipe.execute()
        if not raw:
            return None
        return self._identity_from(raw, history)

    async def consume_quota(
        self,
        identity_id: str,
        cost: int,
        entry: Optional[UsageHistoryEntry],
        history_limit: int,
    ) -> ConsumeResult:
        await self._ensure_connected()
        async with self._guard("consume_quota"):
            outcome = await self._consume_script(
                keys=[self._identity_key(identity_id), self._history_key(identity_id)],
                args=[cost, entry.model_dump_json() if entry else "", history_limit],
            )
        if int(outcome) < 0:
            return ConsumeResult(False, None)
        return ConsumeResult(int(outcome) == 1, await self.get_identity(identity_id))

    async def _reset(
        self, identity_id: str, now: datetime, new_expires_at: datetime, force: bool
    ) -> Optional[Identity]:
        await self._ensure_connected()
        async with self._guard("reset_identity"):
            applied = await self._reset_script(
                keys=[
                    self._identity_key(identity_id),
                    self._history_key(identity_id),
                    self._key("identities", "expiry"),
                ],
                args=[
                    to_epoch_ms(now),
                    to_epoch_ms(new_expires_at),
                    self._native_expiry_ms(new_expires_at),
                    identity_id,
                    "1" if force else "0",
                ],
            )
        if int(applied) != 1:
            return None
        return await self.get_identity(identity_id)

    async def renew_identity_if_expired(
        self, identity_id: str, now: datetime, new_expires_at: datetime
    ) -> Optional[Identity]:
        return await self._reset(identity_id, now, new_expires_at, force=False)

    async def reset_identity(self, identity_id: str, new_expires_at: datetime) -> Optional[Identity]:
        return await self._reset(identity_id, new_expires_at, new_expires_at, force=True)

    async def delete_identity(self, identity_id: str) -> bool:
        client = await self._ensure_connected()
        async with self._guard("delete_identity"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._identity_key(identity_id), self._history_key(identity_id))
                pipe.zrem(self._key("identities", "expiry"), identity_id)
                deleted, _ = await pipe.execute()
        return deleted > 0

    async def delete_expired_identities(self, now: datetime) -> int:
        client = await self._ensure_connected()
        index = self._key("identities", "expiry")
        async with self._guard("delete_expired_identities"):
            expired = await client.zrangebyscore(index, "-inf", to_epoch_ms(now))
            if not expired:
                return 0
            async with client.pipeline(transaction=True) as pipe:
                for identity_id in expired:
                    pipe.delete(self._identity_key(identity_id), self._history_key(identity_id))
                pipe.zrem(index, *expired)
                results = await pipe.execute()
        return int(results[-1])

    async def count_identities(self) -> int:
        client = await self._ensure_connected()
        async with self._guard("count_identities"):
            return int(await client.zcard(self._key("identities", "expiry")))

    # Sessions

    def _session_key(self, session_id: str) -> str:
        return self._key("session", session_id)

    @staticmethod
    def _session_mapping(session: Session) -> Dict[str, Any]:
        return {
            "id": session.id,
            "identity_id": session.identity_id,
            "token": session.token,
            "is_active": int(session.is_active),
            "ip_address": session.ip_address,
            "user_agent": session.user_agent,
            "fingerprint": session.fingerprint,
            "created_at": to_epoch_ms(session.created_at),
            "last_activity_at": to_epoch_ms(session.last_activity_at),
            "expires_at": to_epoch_ms(session.expires_at),
            "deactivated_at": to_epoch_ms(session.deactivated_at) if session.deactivated_at else "",
        }

    @staticmethod
    def _session_from(raw: Dict[str, str]) -> Session:
        return Session(
            id=raw["id"],
            identity_id=raw["identity_id"],
            token=raw["token"],
            is_active=raw["is_active"] == "1",
            ip_address=raw.get("ip_address", "unknown"),
            user_agent=raw.get("user_agent", ""),
            fingerprint=raw["fingerprint"],
            created_at=from_epoch_ms(int(raw["created_at"])),
            last_activity_at=from_epoch_ms(int(raw["last_activity_at"])),
            expires_at=from_epoch_ms(int(raw["expires_at"])),
            deactivated_at=from_epoch_ms(int(raw["deactivated_at"])) if raw.get("deactivated_at") else None,
        )

    def _write_session(self, pipe: Any, session: Session) -> None:
        key = self._session_key(session.id)
        native = self._native_expiry_ms(session.expires_at)
        pipe.hset(key, mapping=self._session_mapping(session))
        pipe.pexpireat(key, native)
        pipe.zadd(self._key("sessions", "expiry"), {session.id: to_epoch_ms(session.expires_at)})

    async def insert_session(self, session: Session) -> None:
        client = await self._ensure_connected()
        by_identity = self._key("identity", session.identity_id, "sessions")
        by_fingerprint = self._key("fingerprint", session.fingerprint, "sessions")
        native = self._native_expiry_ms(session.expires_at)

        async with self._guard("insert_session"):
            async with client.pipeline(transaction=True) as pipe:
                self._write_session(pipe, session)
                pipe.sadd(by_identity, session.id)
                pipe.pexpireat(by_identity, native)
                pipe.sadd(by_fingerprint, session.id)
                pipe.pexpireat(by_fingerprint, native)
                await pipe.execute()

    async def _load_sessions(self, client: redis.Redis, session_ids: List[str]) -> List[Session]:
        if not session_ids:
            return []
        async with client.pipeline(transaction=False) as pipe:
            for session_id in session_ids:
                pipe.hgetall(self._session_key(session_id))
            rows = await pipe.execute()
        return [self._session_from(row) for row in rows if row]

    async def list_sessions(self, identity_id: str) -> List[Session]:
        client = await self._ensure_connected()
        async with self._guard("list_sessions"):
            session_ids = await client.smembers(self._key("identity", identity_id, "sessions"))
            return await self._load_sessions(client, list(session_ids))

    async def count_active_sessions(self, fingerprint: str, now: datetime) -> int:
        client = await self._ensure_connected()
        async with self._guard("count_active_sessions"):
            session_ids = await client.smembers(self._key("fingerprint", fingerprint, "sessions"))
            sessions = await self._load_sessions(client, list(session_ids))
        return sum(1 for s in sessions if s.is_live(now))

    async def refresh_active_session(
        self,
        identity_id: str,
        expires_at: datetime,
        now: datetime,
        token: Optional[str] = None,
    ) -> Optional[Session]:
        client = await self._ensure_connected()
        sessions = await self.list_sessions(identity_id)
        active = sorted(
            (s for s in sessions if s.is_active),
            key=lambda s: s.last_activity_at,
            reverse=True,
        )
        if not active:
            return None

        current = active[0]
        if token is not None:
            current.token = token
        current.expires_at = expires_at
        current.last_activity_at = now

        async with self._guard("refresh_active_session"):
            async with client.pipeline(transaction=True) as pipe:
                self._write_session(pipe, current)
                for stale in active[1:]:
                    pipe.hset(
                        self._session_key(stale.id),
                        mapping={"is_active": 0, "deactivated_at": to_epoch_ms(now)},
                    )
                await pipe.execute()
        return current

    async def deactivate_sessions(self, identity_id: str, now: datetime) -> int:
        client = await self._ensure_connected()
        active = [s for s in await self.list_sessions(identity_id) if s.is_active]
        if not active:
            return 0
        async with self._guard("deactivate_sessions"):
            async with client.pipeline(transaction=True) as pipe:
                for session in active:
                    pipe.hset(
                        self._session_key(session.id),
                        mapping={"is_active": 0, "deactivated_at": to_epoch_ms(now)},
                    )
                await pipe.execute()
        return len(active)

    async def delete_expired_sessions(self, now: datetime) -> int:
        client = await self._ensure_connected()
        index = self._key("sessions", "expiry")
        async with self._guard("delete_expired_sessions"):
            expired = await client.zrangebyscore(index, "-inf", to_epoch_ms(now))
            if not expired:
                return 0
            sessions = await self._load_sessions(client, expired)
            async with client.pipeline(transaction=True) as pipe:
                for session in sessions:
                    pipe.srem(self._key("identity", session.identity_id, "sessions"), session.id)
                    pipe.srem(self._key("fingerprint", session.fingerprint, "sessions"), session.id)
                pipe.delete(*[self._session_key(session_id) for session_id in expired])
                pipe.zrem(index, *expired)
                results = await pipe.execute()
        return int(results[-1])

    # Revoked tokens

    async def insert_revoked_token(self, record: RevokedToken) -> bool:
        client = await self._ensure_connected()
        digest = record.digest
        async with self._guard("insert_revoked_token"):
            inserted = await client.set(
                self._key("revoked", digest),
                record.model_dump_json(),
                nx=True,
                pxat=self._native_expiry_ms(record.expires_at),
            )
            if not inserted:
                return False
            await client.zadd(self._key("revocations", "expiry"), {digest: to_epoch_ms(record.expires_at)})
        return True

    async def is_token_revoked(self, token: str, now: datetime) -> bool:
        client = await self._ensure_connected()
        async with self._guard("is_token_revoked"):
            raw = await client.get(self._key("revoked", token_digest(token)))
        if raw is None:
            return False
        return RevokedToken.model_validate_json(raw).expires_at > now

    async def delete_expired_revoked_tokens(self, now: datetime) -> int:
        client = await self._ensure_connected()
        index = self._key("revocations", "expiry")
        async with self._guard("delete_expired_revoked_tokens"):
            expired = await client.zrangebyscore(index, "-inf", to_epoch_ms(now))
            if not expired:
                return 0
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(*[self._key("revoked", digest) for digest in expired])
                pipe.zrem(index, *expired)
                results = await pipe.execute()
        return int(results[-1])

    # Cache entries

    def _entry_key(self, key: str) -> str:
        return self._key("cache", "entry", key)

    def _class_key(self, endpoint_class: str) -> str:
        return self._key("cache", "class", endpoint_class)

    @staticmethod
    def _entry_from(key: str, raw: Dict[str, str]) -> CacheEntry:
        return CacheEntry(
            key=key,
            value=json.loads(raw["value"]),
            endpoint_class=raw["endpoint_class"],
            expires_at=from_epoch_ms(int(raw["expires_at"])),
            hits=int(raw.get("hits", 0)),
            created_at=from_epoch_ms(int(raw["created_at"])),
            last_accessed_at=from_epoch_ms(int(raw["last_accessed_at"])),
        )

    async def upsert_cache_entry(self, entry: CacheEntry) -> None:
        client = await self._ensure_connected()
        hash_key = self._entry_key(entry.key)
        mapping = {
            "value": json.dumps(entry.value, default=str),
            "endpoint_class": entry.endpoint_class,
            "expires_at": to_epoch_ms(entry.expires_at),
            "hits": entry.hits,
            "created_at": to_epoch_ms(entry.created_at),
            "last_accessed_at": to_epoch_ms(entry.last_accessed_at),
        }
        async with self._guard("upsert_cache_entry"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(hash_key)
                pipe.hset(hash_key, mapping=mapping)
                pipe.pexpireat(hash_key, self._native_expiry_ms(entry.expires_at))
                pipe.zadd(self._key("cache", "index"), {entry.key: to_epoch_ms(entry.expires_at)})
                pipe.sadd(self._class_key(entry.endpoint_class), entry.key)
                await pipe.execute()

    async def hit_cache_entry(self, key: str, now: datetime) -> Optional[CacheEntry]:
        await self._ensure_connected()
        async with self._guard("hit_cache_entry"):
            values = await self._hit_script(keys=[self._entry_key(key)], args=[to_epoch_ms(now)])
        if not values:
            return None
        return self._entry_from(key, _pairs_to_dict(values))

    async def list_cache_entries(self) -> List[CacheEntry]:
        client = await self._ensure_connected()
        async with self._guard("list_cache_entries"):
            keys = await client.zrange(self._key("cache", "index"), 0, -1)
            if not keys:
                return []
            async with client.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.hgetall(self._entry_key(key))
                rows = await pipe.execute()
        return [self._entry_from(key, row) for key, row in zip(keys, rows) if row]

    async def _delete_keys(self, client: redis.Redis, keys: List[str]) -> int:
        if not keys:
            return 0
        async with client.pipeline(transaction=True) as pipe:
            pipe.delete(*[self._entry_key(key) for key in keys])
            pipe.zrem(self._key("cache", "index"), *keys)
            for endpoint_class in EndpointClass:
                pipe.srem(self._class_key(endpoint_class.value), *keys)
            results = await pipe.execute()
        return int(results[1])

    async def delete_cache_entries(self, pattern: Pattern[str]) -> int:
        client = await self._ensure_connected()
        async with self._guard("delete_cache_entries"):
            keys = await client.zrange(self._key("cache", "index"), 0, -1)
            return await self._delete_keys(client, [key for key in keys if pattern.fullmatch(key)])

    async def delete_cache_class(self, endpoint_class: str) -> int:
        client = await self._ensure_connected()
        async with self._guard("delete_cache_class"):
            keys = await client.smembers(self._class_key(endpoint_class))
            return await self._delete_keys(client, list(keys))

    async def delete_all_cache_entries(self) -> int:
        client = await self._ensure_connected()
        async with self._guard("delete_all_cache_entries"):
            keys = await client.zrange(self._key("cache", "index"), 0, -1)
            return await self._delete_keys(client, list(keys))

    async def delete_expired_cache_entries(self, now: datetime) -> int:
        client = await self._ensure_connected()
        async with self._guard("delete_expired_cache_entries"):
            keys = await client.zrangebyscore(self._key("cache", "index"), "-inf", to_epoch_ms(now))
            return await self._delete_keys(client, list(keys))
