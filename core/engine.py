"""
爬取引擎

从起始页出发按深度和页数上限遍历同域页面，提取、过滤、去重、分类图片，
最后生成 CrawlReport。一个引擎实例同一时间只执行一次 crawl()。
"""
import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse
import aiohttp
from loguru import logger

from core.categorizer import determine_category, file_extension, generate_filename
from core.deduplicator import DedupIndex, compute_fingerprint
from core.errors import FetchFailure, InvalidStartURL, PolicyDenied
from core.fetcher import HTML_ACCEPT, IMAGE_ACCEPT, PageFetcher
from core.imaging import probe_image
from core.models import CrawlReport, ImageRecord
from core.options import CrawlOptions
from core.parser import PageParser, ParsedPage
from core.proxy_manager import ProxyManager
from core.rate_gate import RateGate
from core.robots import RobotsChecker

ProgressCallback = Callable[[float], None]


def _chunks(items: List, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def validate_start_url(url: str) -> str:
    """起始URL必须是 http(s) 绝对地址"""
    if not isinstance(url, str) or not url.strip():
        raise InvalidStartURL("Start URL is empty", context={"url": url})
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidStartURL(f"Invalid start URL: {url}", context={"url": url})
    return url


class CrawlState:
    """单次爬取的状态，仅属于一个引擎的一次 crawl() 调用"""

    def __init__(self):
        self.visited = set()
        self.registry: Dict[str, List[ImageRecord]] = {}
        self.dedup = DedupIndex()
        self.stats = {
            "discovered": 0,
            "duplicates": 0,
            "filtered": 0,
            "failed": 0,
            "pages_failed": 0
        }
        self.started_at = datetime.now()


class CrawlEngine:
    """爬取引擎"""

    def __init__(
        self,
        options: Optional[CrawlOptions] = None,
        proxy_manager: Optional[ProxyManager] = None,
        rate_gate: Optional[RateGate] = None,
        fetcher: Optional[PageFetcher] = None,
        robots_checker: Optional[RobotsChecker] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """
        初始化引擎

        Args:
            options: 爬取参数
            proxy_manager: 代理管理器（在所有请求间共享）
            rate_gate: 限速器（默认按 options 创建）
            fetcher: 抓取器（默认每次 crawl 新建并在结束时关闭）
            robots_checker: robots.txt 检查器
            on_progress: 进度回调，参数为百分比
        """
        self.options = options or CrawlOptions()
        self.proxy_manager = proxy_manager
        self.rate_gate = rate_gate or RateGate.from_options(self.options)
        self.fetcher = fetcher
        self.robots_checker = robots_checker or RobotsChecker(self.options.user_agent)
        self.on_progress = on_progress
        self.parser = PageParser()
        self.state: Optional[CrawlState] = None
        self._running = False

    async def crawl(self, start_url: str) -> CrawlReport:
        """
        执行一次爬取

        Args:
            start_url: 起始URL

        Returns:
            CrawlReport

        Raises:
            InvalidStartURL: 起始URL非法
            PolicyDenied: robots.txt 禁止抓取起始URL
            RuntimeError: 同一实例上已有爬取在进行
        """
        start_url = validate_start_url(start_url)
        if self._running:
            raise RuntimeError("CrawlEngine.crawl() is already running on this instance")

        self._running = True
        self.state = CrawlState()
        owns_fetcher = self.fetcher is None
        fetcher = self.fetcher or PageFetcher(self.options, self.proxy_manager, self.rate_gate)

        try:
            if owns_fetcher:
                await fetcher.init_session()
            logger.info(f"🚀 Starting crawl: {start_url} (max_depth={self.options.max_depth}, max_pages={self.options.max_pages})")

            if self.options.respect_robots:
                if not await self._robots_allows(start_url, fetcher):
                    raise PolicyDenied(
                        f"robots.txt disallows {start_url} for {self.options.user_agent}",
                        context={"url": start_url}
                    )

            await self._crawl_page(start_url, 0, fetcher)
        finally:
            if owns_fetcher:
                await fetcher.close()
            self._running = False

        report = CrawlReport.build(
            start_url=start_url,
            registry=self.state.registry,
            stats=self.state.stats,
            pages_visited=len(self.state.visited),
            started_at=self.state.started_at,
        )
        logger.success(
            f"✅ Crawl finished: {start_url} - {report.total_images} images, "
            f"{report.pages_visited} pages, {report.duplicates} duplicates, "
            f"{report.filtered} filtered, {report.failed} failed ({report.elapsed_seconds:.1f}s)"
        )
        return report

    async def _robots_allows(self, url: str, fetcher: PageFetcher) -> bool:
        session = getattr(fetcher, "session", None)
        if session is not None:
            return await self.robots_checker.can_fetch(url, session)
        # 注入的抓取器尚未打开会话
        timeout = aiohttp.ClientTimeout(total=self.options.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self.robots_checker.can_fetch(url, session)

    def _report_progress(self):
        if self.on_progress is None:
            return
        percent = min(100.0, round(len(self.state.visited) / self.options.max_pages * 100, 1))
        self.on_progress(percent)

    # ========================================================================
    # 页面遍历
    # ========================================================================

    async def _crawl_page(self, url: str, depth: int, fetcher: PageFetcher):
        state = self.state
        # 检查与登记之间没有 await，同批并发的页面不会重复访问
        if depth > self.options.max_depth:
            return
        if url in state.visited:
            return
        if len(state.visited) >= self.options.max_pages:
            return
        state.visited.add(url)

        logger.info(f"📄 Crawling: {url} (depth: {depth})")
        try:
            result = await fetcher.fetch(url, HTML_ACCEPT)
        except FetchFailure as e:
            state.stats["pages_failed"] += 1
            logger.warning(f"⚠️  Error crawling {url}: {e.reason}")
            self._report_progress()
            return
        self._report_progress()

        if not result.is_html:
            logger.debug(f"Skipping non-HTML content: {url} ({result.content_type})")
            return

        try:
            page = self.parser.parse(result.text, url)
        except Exception as e:
            state.stats["pages_failed"] += 1
            logger.warning(f"⚠️  Failed to parse {url}: {e}")
            return

        await self._process_images(page, fetcher)

        if depth >= self.options.max_depth:
            return

        links = [link for link in page.links if link not in state.visited]
        for batch in _chunks(links, self.options.concurrent_requests):
            if len(state.visited) >= self.options.max_pages:
                break
            await asyncio.gather(*(self._crawl_page(link, depth + 1, fetcher) for link in batch))

    # ========================================================================
    # 图片处理
    # ========================================================================

    async def _process_images(self, page: ParsedPage, fetcher: PageFetcher):
        state = self.state
        state.stats["discovered"] += len(page.image_urls)

        for batch in _chunks(page.image_urls, self.options.concurrent_requests):
            records = await asyncio.gather(*(self._inspect_image(url, page, fetcher) for url in batch))
            # 按发现顺序登记，先出现的指纹优先
            for record in records:
                if record is None:
                    continue
                if self.options.detect_duplicates and not state.dedup.insert(record.fingerprint, record.url):
                    state.stats["duplicates"] += 1
                    logger.debug(f"Skipping duplicate image: {record.url}")
                    continue
                state.registry.setdefault(record.category, []).append(record)

    async def _inspect_image(self, url: str, page: ParsedPage, fetcher: PageFetcher) -> Optional[ImageRecord]:
        """抓取并检查单张图片，不合格返回 None（计入相应计数）"""
        state = self.state
        options = self.options

        extension = file_extension(url)
        if extension not in options.allowed_extensions:
            state.stats["filtered"] += 1
            logger.debug(f"Skipping image type: {url}")
            return None

        try:
            result = await fetcher.fetch(url, IMAGE_ACCEPT)
        except FetchFailure as e:
            state.stats["failed"] += 1
            logger.debug(f"Failed to fetch image {url}: {e.reason}")
            return None

        probe = probe_image(result.body, url)
        if probe.width < options.min_width or probe.height < options.min_height:
            state.stats["filtered"] += 1
            logger.debug(f"Skipping small image: {url} ({probe.width}x{probe.height})")
            return None
        if probe.size_bytes > options.max_image_size_bytes:
            state.stats["filtered"] += 1
            logger.debug(f"Skipping large image: {url} ({probe.size_bytes / 1024:.2f}KB)")
            return None

        fingerprint = None
        if options.detect_duplicates:
            fingerprint = compute_fingerprint(probe.image, url, probe.size_bytes)

        return ImageRecord(
            url=url,
            page_url=page.url,
            page_title=page.title,
            category=determine_category(page.url, page.title, options.category_mode),
            filename=generate_filename(url, page.title, probe.format or extension),
            width=probe.width,
            height=probe.height,
            size_bytes=probe.size_bytes,
            extension=extension,
            fingerprint=fingerprint,
            dimensions_known=probe.decoded,
        )


def run_crawl(
    url: str,
    options: Optional[CrawlOptions] = None,
    proxy_manager: Optional[ProxyManager] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> CrawlReport:
    """同步执行一次爬取（本地模式和工作进程使用）"""
    engine = CrawlEngine(options, proxy_manager=proxy_manager, on_progress=on_progress)
    return asyncio.run(engine.crawl(url))
