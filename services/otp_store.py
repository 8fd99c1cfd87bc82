"""OTP Record Store - one pending record per principal, behind swappable backends.

Backends:
  memory - process-local dict guarded by a lock (tests / single-process dev)
  file   - JSON file on disk, read-modify-write under a lock
  redis  - one hash per principal with server-side TTL

Env vars:
  OTP_STORE_BACKEND (memory|file|redis), OTP_STORE_FILE, REDIS_URL, REDIS_TIMEOUT_SECONDS
"""
import json
import logging
import math
import os
import tempfile
import time
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any, Dict, Optional

import redis

from services.errors import StoreError

logger = logging.getLogger(__name__)

DEFAULT_STORE_FILE = os.path.join("uploads", "otp_codes.json")


@dataclass
class OTPRecord:
    principal: str
    code_digest: str
    created_at: float
    expires_at: float
    attempts: int = 0
    max_attempts: int = 5
    context: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OTPRecord":
        return cls(
            principal=data["principal"],
            code_digest=data["code_digest"],
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            attempts=int(data.get("attempts", 0)),
            max_attempts=int(data.get("max_attempts", 5)),
            context=dict(data.get("context") or {}),
        )


class OTPStore:
    """Keyed storage for pending OTP records. Implementations must be atomic per principal."""

    def put(self, principal: str, record: OTPRecord, ttl_seconds: int) -> None:
        raise NotImplementedError

    def get(self, principal: str) -> Optional[OTPRecord]:
        raise NotImplementedError

    def delete(self, principal: str) -> bool:
        """Remove the record; True if this call removed it."""
        raise NotImplementedError

    def increment_attempts(self, principal: str) -> Optional[int]:
        """Return the new attempt count, or None if the record no longer exists.

        Verification calls this before comparing a guess, so the returned count
        is the reservation for that guess."""
        raise NotImplementedError

    def consume(self, principal: str, code_digest: str) -> bool:
        """Delete the record only while it still holds ``code_digest``; True if this call removed it."""
        raise NotImplementedError

    def purge_expired(self, now: Optional[float] = None) -> int:
        return 0


class MemoryOTPStore(OTPStore):
    def __init__(self):
        self._lock = Lock()
        self._records: Dict[str, Dict[str, Any]] = {}

    def put(self, principal, record, ttl_seconds):
        with self._lock:
            self._records[principal] = record.to_dict()

    def get(self, principal):
        with self._lock:
            data = self._records.get(principal)
            return OTPRecord.from_dict(data) if data else None

    def delete(self, principal):
        with self._lock:
            return self._records.pop(principal, None) is not None

    def increment_attempts(self, principal):
        with self._lock:
            data = self._records.get(principal)
            if data is None:
                return None
            data["attempts"] = int(data.get("attempts", 0)) + 1
            return data["attempts"]

    def consume(self, principal, code_digest):
        with self._lock:
            data = self._records.get(principal)
            if data is None or data["code_digest"] != code_digest:
                return False
            del self._records[principal]
            return True

    def purge_expired(self, now=None):
        now = time.time() if now is None else now
        with self._lock:
            expired = [p for p, d in self._records.items() if now >= float(d["expires_at"])]
            for p in expired:
                del self._records[p]
        return len(expired)


class JsonFileOTPStore(OTPStore):
    """Records kept in a single JSON document keyed by principal."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or os.getenv("OTP_STORE_FILE") or DEFAULT_STORE_FILE
        self._lock = Lock()
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except ValueError as e:
            logger.error("OTP store file %s is corrupt: %s", self.path, e)
            raise StoreError("OTP store unreadable") from e
        except OSError as e:
            raise StoreError("OTP store unreadable") from e
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Dict[str, Any]]) -> None:
        directory = os.path.dirname(self.path) or "."
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Failed saving OTP store %s: %s", self.path, e)
            raise StoreError("OTP store unwritable") from e

    def put(self, principal, record, ttl_seconds):
        with self._lock:
            data = self._load()
            data[principal] = record.to_dict()
            self._save(data)

    def get(self, principal):
        with self._lock:
            entry = self._load().get(principal)
        return OTPRecord.from_dict(entry) if entry else None

    def delete(self, principal):
        with self._lock:
            data = self._load()
            if data.pop(principal, None) is None:
                return False
            self._save(data)
            return True

    def increment_attempts(self, principal):
        with self._lock:
            data = self._load()
            entry = data.get(principal)
            if entry is None:
                return None
            entry["attempts"] = int(entry.get("attempts", 0)) + 1
            self._save(data)
            return entry["attempts"]

    def consume(self, principal, code_digest):
        with self._lock:
            data = self._load()
            entry = data.get(principal)
            if entry is None or entry.get("code_digest") != code_digest:
                return False
            del data[principal]
            self._save(data)
            return True

    def purge_expired(self, now=None):
        now = time.time() if now is None else now
        with self._lock:
            data = self._load()
            kept = {p: d for p, d in data.items() if now < float(d["expires_at"])}
            removed = len(data) - len(kept)
            if removed:
                self._save(kept)
        return removed


class RedisOTPStore(OTPStore):
    """One hash per principal at ``otp:<principal>``; expiry handled by Redis as well."""

    key_prefix = "otp:"

    def __init__(self, redis_url: Optional[str] = None, client=None, timeout: Optional[float] = None):
        if client is None:
            url = redis_url or os.getenv("REDIS_URL")
            if not url:
                raise StoreError("REDIS_URL must be configured when OTP_STORE_BACKEND=redis")
            timeout = timeout or float(os.getenv("REDIS_TIMEOUT_SECONDS", "3"))
            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        self.redis = client

    def _key(self, principal: str) -> str:
        return f"{self.key_prefix}{principal}"

    def _call(self, op: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except redis.RedisError as e:
            logger.error("Redis %s failed: %s", op, e)
            raise StoreError("OTP store unavailable") from e

    def put(self, principal, record, ttl_seconds):
        key = self._key(principal)
        mapping = {
            "principal": record.principal,
            "code_digest": record.code_digest,
            "created_at": repr(record.created_at),
            "expires_at": repr(record.expires_at),
            "attempts": record.attempts,
            "max_attempts": record.max_attempts,
            "context": json.dumps(record.context),
        }
        pipe = self.redis.pipeline(transaction=True)
        pipe.delete(key)
        pipe.hset(key, mapping=mapping)
        pipe.expire(key, max(1, int(math.ceil(ttl_seconds))))
        self._call("put", pipe.execute)

    def get(self, principal):
        data = self._call("get", self.redis.hgetall, self._key(principal))
        if not data:
            return None
        data["context"] = json.loads(data.get("context") or "{}")
        return OTPRecord.from_dict(data)

    def delete(self, principal):
        return bool(self._call("delete", self.redis.delete, self._key(principal)))

    def increment_attempts(self, principal):
        key = self._key(principal)

        def _incr(pipe):
            if not pipe.exists(key):
                return
            pipe.multi()
            pipe.hincrby(key, "attempts", 1)

        result = self._call("increment_attempts", self.redis.transaction, _incr, key)
        return int(result[0]) if result else None

    def consume(self, principal, code_digest):
        key = self._key(principal)

        def _consume(pipe):
            if pipe.hget(key, "code_digest") != code_digest:
                return
            pipe.multi()
            pipe.delete(key)

        result = self._call("consume", self.redis.transaction, _consume, key)
        return bool(result and result[0])


def build_store(backend: Optional[str] = None) -> OTPStore:
    backend = (backend or os.getenv("OTP_STORE_BACKEND", "memory") or "memory").lower()
    if backend == "memory":
        return MemoryOTPStore()
    if backend == "file":
        return JsonFileOTPStore()
    if backend == "redis":
        return RedisOTPStore()
    raise ValueError(f"Unknown OTP_STORE_BACKEND: {backend}")
