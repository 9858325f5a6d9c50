"""
代理管理模块

代理池 + 轮换指针 + 成功/失败计数 + 黑名单。
所有读改写操作在同一把锁下串行执行，实例显式注入到每个爬取引擎。
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse
import aiohttp
from aiohttp_socks import ProxyConnectionError, ProxyConnector, ProxyError, ProxyTimeoutError
from loguru import logger

from config import ProxyConfig

HTTP_SCHEMES = ("http", "https")
SOCKS_SCHEMES = ("socks4", "socks5")
SUPPORTED_SCHEMES = HTTP_SCHEMES + SOCKS_SCHEMES
# 经代理请求时可能出现的网络层异常
PROXY_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ProxyError, ProxyConnectionError, ProxyTimeoutError)


def socks_session(address: str, timeout: float) -> aiohttp.ClientSession:
    """经 socks 代理的会话（aiohttp 的 proxy 参数只支持 http 代理）"""
    return aiohttp.ClientSession(
        connector=ProxyConnector.from_url(address),
        timeout=aiohttp.ClientTimeout(total=timeout),
    )


@dataclass
class ProxyEndpoint:
    """代理节点"""
    address: str
    successes: int = 0
    failures: int = 0
    blacklisted: bool = False

    @property
    def success_rate(self) -> float:
        """成功率（百分比）"""
        total = self.successes + self.failures
        if total == 0:
            return 0.0
        return round(self.successes / total * 100, 2)

    @property
    def scheme(self) -> str:
        return urlparse(self.address).scheme.lower()

    @property
    def is_socks(self) -> bool:
        return self.scheme in SOCKS_SCHEMES

    def to_dict(self) -> dict:
        return {
            "proxy": self.address,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": self.success_rate,
            "blacklisted": self.blacklisted
        }


class ProxyManager:
    """代理管理器"""

    def __init__(
        self,
        addresses: Optional[List[str]] = None,
        enabled: bool = True,
        failure_threshold: int = 3,
        rotation_interval: float = 0.0,
        test_url: str = "https://httpbin.org/ip",
        test_timeout: float = 5.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        初始化代理管理器

        Args:
            addresses: 代理地址列表（http://host:port）
            enabled: 是否启用代理
            failure_threshold: 失败次数超过该值后拉黑
            rotation_interval: 自动轮换间隔（秒），0 表示只在失败时轮换
            test_url: 代理测试地址（返回请求来源IP）
            test_timeout: 测试超时（秒）
            clock: 单调时钟（测试可注入）
        """
        self.pool: List[ProxyEndpoint] = []
        seen = set()
        for address in addresses or []:
            address = address.strip()
            if address and address not in seen:
                seen.add(address)
                self.pool.append(ProxyEndpoint(address))

        self.enabled = enabled
        self.failure_threshold = failure_threshold
        self.rotation_interval = rotation_interval
        self.test_url = test_url
        self.test_timeout = test_timeout
        self._clock = clock or time.monotonic
        self._index = 0
        self._last_rotation = self._clock()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, proxy_config: ProxyConfig, enabled: Optional[bool] = None) -> "ProxyManager":
        """从配置创建"""
        return cls(
            addresses=proxy_config.proxy_list,
            enabled=proxy_config.use_proxy if enabled is None else enabled,
            failure_threshold=proxy_config.failure_threshold,
            rotation_interval=proxy_config.rotation_interval,
            test_url=proxy_config.test_url,
            test_timeout=proxy_config.test_timeout,
        )

    def _advance(self):
        self._index = (self._index + 1) % len(self.pool)
        self._last_rotation = self._clock()

    def next(self) -> Optional[ProxyEndpoint]:
        """
        获取当前可用代理

        跳过黑名单节点，最多绕池一圈。

        Returns:
            可用代理；未启用、池为空或全部拉黑时返回 None
        """
        with self._lock:
            if not self.enabled or not self.pool:
                return None

            if self.rotation_interval > 0 and self._clock() - self._last_rotation >= self.rotation_interval:
                self._advance()

            for _ in range(len(self.pool)):
                endpoint = self.pool[self._index]
                if not endpoint.blacklisted:
                    return endpoint
                self._index = (self._index + 1) % len(self.pool)
            return None

    def rotate(self):
        """轮换到下一个代理"""
        with self._lock:
            if self.pool:
                self._advance()

    def record_success(self, endpoint: ProxyEndpoint):
        with self._lock:
            endpoint.successes += 1

    def record_failure(self, endpoint: ProxyEndpoint) -> bool:
        """
        记录一次失败

        Returns:
            本次是否导致拉黑
        """
        with self._lock:
            endpoint.failures += 1
            if endpoint.failures > self.failure_threshold and not endpoint.blacklisted:
                endpoint.blacklisted = True
                logger.warning(f"Proxy blacklisted: {endpoint.address} ({endpoint.failures} failures)")
                return True
            return False

    def blacklist(self, endpoint: ProxyEndpoint):
        with self._lock:
            if not endpoint.blacklisted:
                endpoint.blacklisted = True
                logger.warning(f"Proxy blacklisted: {endpoint.address}")

    def clear_blacklist(self):
        """清空黑名单（计数保留）"""
        with self._lock:
            for endpoint in self.pool:
                endpoint.blacklisted = False
        logger.info("Proxy blacklist cleared")

    def get(self, address: str) -> Optional[ProxyEndpoint]:
        for endpoint in self.pool:
            if endpoint.address == address:
                return endpoint
        return None

    # ========================================================================
    # 连通性测试
    # ========================================================================

    async def test_proxy(self, endpoint: ProxyEndpoint, session: aiohttp.ClientSession) -> bool:
        """测试单个代理"""
        if endpoint.scheme not in SUPPORTED_SCHEMES:
            logger.warning(f"Unsupported proxy scheme, treating as unreachable: {endpoint.address}")
            return False
        try:
            if endpoint.is_socks:
                async with socks_session(endpoint.address, self.test_timeout) as proxied:
                    return await self._request_test_url(endpoint, proxied, proxy=None)
            return await self._request_test_url(endpoint, session, proxy=endpoint.address)
        except PROXY_ERRORS as e:
            logger.info(f"Proxy {endpoint.address} test failed: {e!r}")
            return False

    async def _request_test_url(self, endpoint: ProxyEndpoint, session: aiohttp.ClientSession, proxy: Optional[str]) -> bool:
        async with session.get(self.test_url, proxy=proxy) as response:
            if response.status != 200:
                logger.info(f"Proxy {endpoint.address} test failed: HTTP {response.status}")
                return False
            body = await response.text()
            logger.info(f"Proxy {endpoint.address} test successful: {body.strip()[:80]}")
            return True

    async def test_all(self, rate_gate=None) -> List[Tuple[ProxyEndpoint, bool]]:
        """
        逐个测试代理，不可达的加入黑名单

        Args:
            rate_gate: 可选的限速器（以测试地址的主机为键）

        Returns:
            [(代理, 是否可达), ...]
        """
        logger.info(f"Testing {len(self.pool)} proxies...")
        results = []
        timeout = aiohttp.ClientTimeout(total=self.test_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for endpoint in list(self.pool):
                if rate_gate is not None:
                    await rate_gate.acquire(urlparse(self.test_url).netloc)
                reachable = await self.test_proxy(endpoint, session)
                if not reachable:
                    self.blacklist(endpoint)
                results.append((endpoint, reachable))
        return results

    # ========================================================================
    # 统计
    # ========================================================================

    def get_stats(self) -> List[Dict]:
        """每个代理的统计"""
        with self._lock:
            return [endpoint.to_dict() for endpoint in self.pool]

    def summary(self) -> Dict[str, int]:
        with self._lock:
            blacklisted = sum(1 for endpoint in self.pool if endpoint.blacklisted)
            return {
                "total": len(self.pool),
                "active": len(self.pool) - blacklisted,
                "blacklisted": blacklisted
            }
