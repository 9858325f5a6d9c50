"""
robots.txt 检查模块
"""
from typing import Dict
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser
import aiohttp
import asyncio
from loguru import logger


class RobotsChecker:
    """按站点缓存 robots.txt 规则"""

    def __init__(self, user_agent: str):
        self.user_agent = user_agent
        self.robots_cache: Dict[str, RobotFileParser] = {}

    @staticmethod
    def _get_origin(url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def _load(self, origin: str, session: aiohttp.ClientSession) -> RobotFileParser:
        robots_url = f"{origin}/robots.txt"
        rp = RobotFileParser()
        rp.set_url(robots_url)
        try:
            async with session.get(robots_url, headers={"User-Agent": self.user_agent}) as response:
                if response.status == 200:
                    raw = await response.read()
                    rp.parse(raw.decode("utf-8", errors="replace").splitlines())
                elif response.status in (401, 403):
                    rp.disallow_all = True
                else:
                    # 不存在则全部允许
                    rp.parse([])
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to load {robots_url}, allowing all: {e!r}")
            rp.parse([])
        return rp

    async def can_fetch(self, url: str, session: aiohttp.ClientSession) -> bool:
        """检查URL是否允许抓取"""
        origin = self._get_origin(url)
        if origin not in self.robots_cache:
            self.robots_cache[origin] = await self._load(origin, session)
        return self.robots_cache[origin].can_fetch(self.user_agent, url)
