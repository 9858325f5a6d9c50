"""
HTTP抓取模块

每次请求：限速 -> 选择代理 -> 占用并发名额发出请求 -> 记录代理结果 -> 请求间隔。
同一抓取器上同时进行的请求不超过 concurrent_requests。
经代理的网络层失败会拉黑计数、轮换代理并重试一次。
"""
import asyncio
import re
from dataclasses import dataclass
from typing import Dict, Optional
import aiohttp
from fake_useragent import UserAgent
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from core.errors import FetchFailure
from core.options import CrawlOptions
from core.proxy_manager import PROXY_ERRORS, ProxyEndpoint, ProxyManager, socks_session
from core.rate_gate import RateGate

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
IMAGE_ACCEPT = "image/webp,image/apng,image/*,*/*;q=0.8"
CHARSET_PATTERN = re.compile(r"charset=([\w-]+)", re.IGNORECASE)


@dataclass
class FetchResult:
    """抓取结果"""
    url: str
    status: int
    content_type: str
    body: bytes
    encoding: Optional[str] = None
    proxy: Optional[str] = None

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type.lower()

    @property
    def text(self) -> str:
        try:
            return self.body.decode(self.encoding or "utf-8", errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


def _is_transport_failure(error: BaseException) -> bool:
    return isinstance(error, FetchFailure) and error.transport


class PageFetcher:
    """页面/图片抓取器"""

    def __init__(
        self,
        options: CrawlOptions,
        proxy_manager: Optional[ProxyManager] = None,
        rate_gate: Optional[RateGate] = None,
    ):
        self.options = options
        self.proxy_manager = proxy_manager
        self.rate_gate = rate_gate or RateGate.from_options(options)
        self.session: Optional[aiohttp.ClientSession] = None
        # socks 代理地址 -> 经该代理的会话
        self._socks_sessions: Dict[str, aiohttp.ClientSession] = {}
        self._slots = asyncio.Semaphore(options.concurrent_requests)
        self._in_flight = 0
        self._ua: Optional[UserAgent] = None
        self.stats = {
            "requests": 0,
            "success": 0,
            "failed": 0,
            "proxy_failures": 0,
            "peak_in_flight": 0
        }

    async def __aenter__(self):
        await self.init_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init_session(self):
        """初始化HTTP会话"""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.options.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        """关闭会话"""
        for session in self._socks_sessions.values():
            await session.close()
        self._socks_sessions.clear()
        if self.session:
            await self.session.close()
            self.session = None
            logger.debug(f"Fetch stats: {self.stats}")

    def _session_for(self, endpoint: Optional[ProxyEndpoint]):
        """返回 (会话, proxy 参数)；socks 代理走独立会话"""
        if endpoint is None or not endpoint.is_socks:
            return self.session, endpoint.address if endpoint else None
        session = self._socks_sessions.get(endpoint.address)
        if session is None:
            session = socks_session(endpoint.address, self.options.request_timeout)
            self._socks_sessions[endpoint.address] = session
        return session, None

    def get_headers(self, accept: str = HTML_ACCEPT) -> Dict[str, str]:
        """获取请求头"""
        if self.options.rotate_user_agent:
            if self._ua is None:
                self._ua = UserAgent()
            user_agent = self._ua.random
        else:
            user_agent = self.options.user_agent
        return {
            "User-Agent": user_agent,
            "Accept": accept,
            "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
        }

    def _use_proxy(self) -> bool:
        return self.options.use_proxy and self.proxy_manager is not None

    async def fetch(self, url: str, accept: str = HTML_ACCEPT) -> FetchResult:
        """
        抓取URL

        Args:
            url: 目标URL
            accept: Accept 请求头

        Returns:
            FetchResult

        Raises:
            FetchFailure: 网络错误、超时或 HTTP 状态码 >= 400
        """
        await self.rate_gate.acquire(RateGate.key_for(url, self.options.rate_limit_scope))

        attempts = 2 if self._use_proxy() else 1
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                retry=retry_if_exception(_is_transport_failure),
                reraise=True,
            ):
                with attempt:
                    result = await self._fetch_once(url, accept)
            self.stats["success"] += 1
            return result
        except FetchFailure:
            self.stats["failed"] += 1
            raise
        finally:
            if self.options.request_delay_ms > 0:
                await asyncio.sleep(self.options.request_delay)

    async def _fetch_once(self, url: str, accept: str) -> FetchResult:
        if self.session is None:
            await self.init_session()

        endpoint = self.proxy_manager.next() if self._use_proxy() else None
        proxy = endpoint.address if endpoint else None
        self.stats["requests"] += 1

        try:
            session, proxy_arg = self._session_for(endpoint)
            async with self._slots:
                self._in_flight += 1
                self.stats["peak_in_flight"] = max(self.stats["peak_in_flight"], self._in_flight)
                try:
                    async with session.get(url, headers=self.get_headers(accept), proxy=proxy_arg) as response:
                        body = await response.read()
                        content_type = response.headers.get("Content-Type", "")
                        status = response.status
                finally:
                    self._in_flight -= 1
        except PROXY_ERRORS as e:
            if endpoint is not None:
                self.stats["proxy_failures"] += 1
                self.proxy_manager.record_failure(endpoint)
                self.proxy_manager.rotate()
                logger.debug(f"Proxy {proxy} failed for {url}, rotating")
            raise FetchFailure(url, repr(e), transport=True) from e

        if endpoint is not None:
            self.proxy_manager.record_success(endpoint)

        if status >= 400:
            raise FetchFailure(url, f"HTTP {status}", status=status, transport=False)

        match = CHARSET_PATTERN.search(content_type)
        return FetchResult(
            url=url,
            status=status,
            content_type=content_type,
            body=body,
            encoding=match.group(1) if match else None,
            proxy=proxy,
        )

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()
