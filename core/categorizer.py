"""
分类与命名模块

分类只依赖 (页面URL, 页面标题, 分类模式)，相同输入总是得到相同分类。
"""
import hashlib
import re
from typing import Optional
from urllib.parse import urlparse

EXTENSION_PATTERN = re.compile(r"\.([a-z0-9]+)$")
NON_WORD_PATTERN = re.compile(r"[^\w\s]")


def determine_category(page_url: str, page_title: str, mode: str) -> str:
    """
    计算图片分类

    Args:
        page_url: 图片所在页面URL
        page_title: 页面标题
        mode: path（首个路径段）/ page（页面标题）/ domain（子域名）

    Returns:
        分类名
    """
    if mode == "path":
        segments = [segment for segment in urlparse(page_url).path.split("/") if segment]
        return segments[0] if segments else "homepage"

    if mode == "page":
        cleaned = NON_WORD_PATTERN.sub("", (page_title or "")[:30]).strip()
        return cleaned or "untitled"

    if mode == "domain":
        parts = (urlparse(page_url).hostname or "").split(".")
        return parts[0] if len(parts) > 2 else "main"

    return "uncategorized"


def file_extension(url: str) -> Optional[str]:
    """从URL路径提取小写扩展名（忽略查询参数和锚点）"""
    match = EXTENSION_PATTERN.search(urlparse(url).path.lower())
    return match.group(1) if match else None


def generate_filename(url: str, page_title: str = "", extension: Optional[str] = None) -> str:
    """
    生成图片文件名

    URL 最后一段带扩展名时直接使用，否则用
    "<清洗后的标题>_<URL哈希前8位>.<扩展名>"。

    Args:
        url: 图片URL
        page_title: 页面标题
        extension: 探测到的扩展名（默认 jpg）
    """
    basename = urlparse(url).path.rstrip("/").split("/")[-1]
    if "." in basename:
        return basename

    title = NON_WORD_PATTERN.sub("_", (page_title or "")[:50]).strip() or "image"
    title = re.sub(r"\s+", "_", title)
    url_hash = hashlib.md5(url.encode()).hexdigest()[:8]
    return f"{title}_{url_hash}.{extension or 'jpg'}"
