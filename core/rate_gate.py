"""
限速模块

按键（URL 或主机）做滑动窗口限速：每个 period 内最多 max_requests 次。
"""
import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional
from urllib.parse import urlparse
from loguru import logger


class RateGate:
    """滑动窗口限速器"""

    def __init__(
        self,
        max_requests: int = 10,
        period: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        """
        初始化限速器

        Args:
            max_requests: 每个周期允许的请求数
            period: 周期（秒）
            clock: 单调时钟（测试可注入）
            sleep: 异步等待函数（测试可注入）
        """
        if max_requests <= 0 or period <= 0:
            raise ValueError("max_requests and period must be positive")
        self.max_requests = max_requests
        self.period = period
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._windows: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self.stats = {
            "granted": 0,
            "throttled": 0,
            "total_wait": 0.0
        }

    @classmethod
    def from_options(cls, options) -> "RateGate":
        return cls(max_requests=options.rate_limit_requests, period=options.rate_limit_period)

    @staticmethod
    def key_for(url: str, scope: str = "url") -> str:
        """按作用域生成限速键"""
        if scope == "host":
            return urlparse(url).netloc.lower()
        return url

    def _try_acquire(self, key: str) -> float:
        """尝试占用一个名额，成功返回 0，否则返回需等待的秒数"""
        now = self._clock()
        window = self._windows.setdefault(key, deque())
        while window and now - window[0] >= self.period:
            window.popleft()
        if len(window) < self.max_requests:
            window.append(now)
            return 0.0
        return self.period - (now - window[0])

    async def acquire(self, key: str) -> float:
        """
        等待直到该键允许发起请求

        Args:
            key: 限速键

        Returns:
            总等待时间（秒）
        """
        waited = 0.0
        while True:
            async with self._lock:
                wait = self._try_acquire(key)
                if wait <= 0:
                    self.stats["granted"] += 1
                    self.stats["total_wait"] += waited
                    return waited
            self.stats["throttled"] += 1
            logger.debug(f"Rate limited: {key} (wait {wait:.3f}s)")
            await self._sleep(wait)
            waited += wait

    def reset(self, key: Optional[str] = None):
        """清空某个键或全部键的窗口"""
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)

    def get_stats(self) -> dict:
        stats = self.stats.copy()
        stats["tracked_keys"] = len(self._windows)
        return stats
