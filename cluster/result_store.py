"""
任务结果存储

内存字典为主，Redis 为可选的带过期时间的副本（键 task:<id>）。
Redis 出错只记录日志，不影响内存结果。
"""
import json
import threading
from typing import Any, Dict, Optional
import redis
from loguru import logger

from config import CacheConfig


class ResultStore:
    """结果存储"""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl: int = 3600,
        key_prefix: str = "task:",
        client: Optional[redis.Redis] = None,
    ):
        """
        初始化结果存储

        Args:
            redis_url: Redis连接URL（为空则只用内存）
            ttl: Redis副本过期时间（秒）
            key_prefix: 键前缀
            client: 已有的 Redis 客户端（测试可注入）
        """
        self.ttl = ttl
        self.key_prefix = key_prefix
        self._results: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.redis = client
        if self.redis is None and redis_url:
            self.redis = redis.Redis.from_url(redis_url, decode_responses=True)
            logger.info(f"Result store mirroring to Redis: {redis_url}")
        self.stats = {
            "stored": 0,
            "memory_hits": 0,
            "redis_hits": 0,
            "misses": 0,
            "redis_errors": 0
        }

    @classmethod
    def from_config(cls, cache_config: CacheConfig) -> "ResultStore":
        return cls(
            redis_url=cache_config.redis_url,
            ttl=cache_config.result_ttl,
            key_prefix=cache_config.key_prefix,
        )

    def _key(self, task_id: str) -> str:
        return f"{self.key_prefix}{task_id}"

    def put(self, task_id: str, payload: Dict[str, Any]):
        """
        保存任务结果

        Args:
            task_id: 任务ID
            payload: {"status": "completed", "report": {...}} 或 {"status": "failed", "error": "..."}
        """
        with self._lock:
            self._results[task_id] = payload
            self.stats["stored"] += 1

        if self.redis is not None:
            try:
                self.redis.setex(self._key(task_id), self.ttl, json.dumps(payload, ensure_ascii=False))
            except redis.RedisError as e:
                self.stats["redis_errors"] += 1
                logger.error(f"Failed to mirror result {task_id} to Redis: {e}")

    def get(self, task_id: str) -> Optional[Dict[str, Any]]:
        """先查内存，再查 Redis"""
        with self._lock:
            payload = self._results.get(task_id)
        if payload is not None:
            self.stats["memory_hits"] += 1
            return payload

        if self.redis is not None:
            try:
                raw = self.redis.get(self._key(task_id))
            except redis.RedisError as e:
                self.stats["redis_errors"] += 1
                logger.error(f"Failed to read result {task_id} from Redis: {e}")
                raw = None
            if raw:
                self.stats["redis_hits"] += 1
                return json.loads(raw)

        self.stats["misses"] += 1
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def info(self) -> Dict[str, Any]:
        """存储信息（含 Redis 状态）"""
        info = {"in_memory": len(self), "stats": self.stats.copy(), "redis": None}
        if self.redis is not None:
            try:
                memory = self.redis.info("memory")
                info["redis"] = {
                    "connected": True,
                    "used_memory_human": memory.get("used_memory_human"),
                    "keys": self.redis.dbsize()
                }
            except redis.RedisError as e:
                info["redis"] = {"connected": False, "error": str(e)}
        return info

    def close(self):
        if self.redis is not None:
            self.redis.close()
