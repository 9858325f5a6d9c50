"""
ResultStore 单元测试（Redis 客户端用 MagicMock 注入）
"""
import json
import unittest
from unittest.mock import MagicMock

import redis

from config import CacheConfig
from cluster.result_store import ResultStore


class TestMemoryStore(unittest.TestCase):
    def test_put_and_get(self):
        store = ResultStore()
        store.put("t1", {"status": "failed", "error": "boom"})
        self.assertEqual(store.get("t1"), {"status": "failed", "error": "boom"})
        self.assertIsNone(store.get("t2"))
        self.assertEqual(len(store), 1)
        self.assertEqual(store.stats["memory_hits"], 1)
        self.assertEqual(store.stats["misses"], 1)

    def test_info_without_redis(self):
        info = ResultStore().info()
        self.assertIsNone(info["redis"])
        self.assertEqual(info["in_memory"], 0)

    def test_from_config_memory_only(self):
        store = ResultStore.from_config(CacheConfig(redis_url=None, result_ttl=60, key_prefix="x:"))
        self.assertIsNone(store.redis)
        self.assertEqual(store.ttl, 60)
        self.assertEqual(store.key_prefix, "x:")


class TestRedisMirror(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.store = ResultStore(ttl=120, client=self.client)

    def test_put_mirrors_with_ttl(self):
        payload = {"status": "completed", "report": {"total_images": 2}}
        self.store.put("abc", payload)
        self.client.setex.assert_called_once()
        key, ttl, raw = self.client.setex.call_args.args
        self.assertEqual(key, "task:abc")
        self.assertEqual(ttl, 120)
        self.assertEqual(json.loads(raw), payload)

    def test_get_falls_back_to_redis(self):
        self.client.get.return_value = json.dumps({"status": "failed", "error": "lost"})
        self.assertEqual(self.store.get("old"), {"status": "failed", "error": "lost"})
        self.client.get.assert_called_once_with("task:old")
        self.assertEqual(self.store.stats["redis_hits"], 1)

    def test_redis_miss(self):
        self.client.get.return_value = None
        self.assertIsNone(self.store.get("nope"))

    def test_redis_errors_do_not_propagate(self):
        self.client.setex.side_effect = redis.ConnectionError("down")
        self.client.get.side_effect = redis.ConnectionError("down")
        self.store.put("t1", {"status": "failed", "error": "x"})
        # 内存结果仍然可用
        self.assertEqual(self.store.get("t1")["error"], "x")
        self.assertIsNone(self.store.get("t2"))
        self.assertEqual(self.store.stats["redis_errors"], 2)

    def test_info_reports_redis(self):
        self.client.info.return_value = {"used_memory_human": "1.2M"}
        self.client.dbsize.return_value = 7
        info = self.store.info()
        self.assertEqual(info["redis"], {"connected": True, "used_memory_human": "1.2M", "keys": 7})

    def test_info_reports_disconnected(self):
        self.client.info.side_effect = redis.ConnectionError("refused")
        self.assertFalse(self.store.info()["redis"]["connected"])

    def test_close(self):
        self.store.close()
        self.client.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
