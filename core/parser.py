"""
页面解析模块

从HTML中提取：
- 页面标题
- 图片地址（img 属性、srcset、内联样式和 <style> 中的背景图）
- 同域链接（主机相同或为其子域名）
"""
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urldefrag, urljoin, urlparse
from bs4 import BeautifulSoup
from loguru import logger

IMAGE_ATTRIBUTES = ("src", "data-src", "data-original")
SKIPPED_LINK_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")
BACKGROUND_URL_PATTERN = re.compile(
    r"background(?:-image)?\s*:[^;{}]*?url\(\s*['\"]?([^'\")]+?)['\"]?\s*\)",
    re.IGNORECASE
)


@dataclass
class ParsedPage:
    """页面解析结果"""
    url: str
    title: str = ""
    image_urls: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)


def is_same_domain(url: str, host: str) -> bool:
    """url 的主机等于 host 或为其子域名"""
    try:
        candidate = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    host = host.lower()
    return bool(candidate) and (candidate == host or candidate.endswith("." + host))


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class PageParser:
    """HTML页面解析器"""

    def parse(self, html: str, page_url: str) -> ParsedPage:
        """
        解析页面

        Args:
            html: HTML内容
            page_url: 页面URL（用于解析相对路径）

        Returns:
            ParsedPage
        """
        soup = BeautifulSoup(html, "lxml")
        page = ParsedPage(url=page_url, title=self._extract_title(soup))
        page.image_urls = self._extract_images(soup, page_url)
        page.links = self._extract_links(soup, page_url)
        logger.debug(f"Parsed {page_url}: {len(page.image_urls)} images, {len(page.links)} links")
        return page

    def _extract_title(self, soup: BeautifulSoup) -> str:
        if soup.title and soup.title.string:
            return soup.title.string.strip()
        return ""

    def _get_image_url(self, img_tag) -> Optional[str]:
        """从img标签获取图片URL（兼容懒加载属性）"""
        for attr in IMAGE_ATTRIBUTES:
            value = img_tag.get(attr)
            if value and value.strip():
                return value.strip()
        srcset = img_tag.get("srcset")
        if srcset and srcset.strip():
            # 取第一个候选
            return srcset.split(",")[0].strip().split()[0]
        return None

    def _resolve(self, raw: str, base_url: str) -> Optional[str]:
        raw = raw.strip()
        if not raw or raw.lower().startswith("data:"):
            return None
        try:
            absolute = urldefrag(urljoin(base_url, raw))[0]
            scheme = urlparse(absolute).scheme
        except ValueError:
            logger.debug(f"Skipping malformed URL on {base_url}: {raw}")
            return None
        if scheme not in ("http", "https"):
            return None
        return absolute

    def _extract_images(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        candidates = []

        for img in soup.find_all("img"):
            src = self._get_image_url(img)
            if src:
                candidates.append(src)

        for tag in soup.find_all(style=True):
            candidates.extend(BACKGROUND_URL_PATTERN.findall(tag["style"]))

        for style in soup.find_all("style"):
            candidates.extend(BACKGROUND_URL_PATTERN.findall(style.get_text()))

        resolved = (self._resolve(src, base_url) for src in candidates)
        return _unique(url for url in resolved if url)

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        host = urlparse(base_url).hostname or ""
        links = []
        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            if not href or href.lower().startswith(SKIPPED_LINK_PREFIXES):
                continue
            absolute = self._resolve(href, base_url)
            if absolute and is_same_domain(absolute, host):
                links.append(absolute)
        return _unique(links)
