"""
图片去重模块

两级指纹：
1. 感知指纹：8x8 灰度均值哈希的位串，再取 MD5
2. 元数据指纹：图片无法解码时，使用 MD5(url + 字节数)
"""
from typing import Dict, Optional
import hashlib
from loguru import logger
from PIL import Image
import imagehash


def _hash_string(text: str) -> str:
    """计算字符串哈希"""
    return hashlib.md5(text.encode()).hexdigest()


def perceptual_fingerprint(image: Image.Image) -> str:
    """
    计算感知指纹

    Args:
        image: PIL 图片

    Returns:
        32位十六进制摘要
    """
    ahash = imagehash.average_hash(image, hash_size=8)
    bits = "".join("1" if bit else "0" for bit in ahash.hash.flatten())
    return _hash_string(bits)


def metadata_fingerprint(url: str, size_bytes: int) -> str:
    """元数据指纹（无法解码时的回退）"""
    return _hash_string(f"{url}{size_bytes}")


def compute_fingerprint(image: Optional[Image.Image], url: str, size_bytes: int) -> str:
    """
    两级指纹：优先像素指纹，失败时回退到元数据指纹

    Args:
        image: 已解码的图片（解码失败时为 None）
        url: 图片URL
        size_bytes: 图片字节数
    """
    if image is not None:
        try:
            return perceptual_fingerprint(image)
        except Exception as e:
            logger.warning(f"Failed to compute perceptual hash for {url}: {e}")
    return metadata_fingerprint(url, size_bytes)


class DedupIndex:
    """
    单次爬取内的指纹索引：指纹 -> 首次出现的图片URL

    不提供删除操作，每次爬取新建实例。
    """

    def __init__(self):
        self._first_seen: Dict[str, str] = {}
        self.stats = {
            "total_checked": 0,
            "duplicates_found": 0,
            "unique_images": 0
        }

    def contains(self, fingerprint: str) -> bool:
        return fingerprint in self._first_seen

    def insert(self, fingerprint: str, url: str) -> bool:
        """
        登记指纹（先到先得）

        Returns:
            是否为新指纹
        """
        self.stats["total_checked"] += 1
        if fingerprint in self._first_seen:
            self.stats["duplicates_found"] += 1
            logger.debug(f"Duplicate image found: {url} (first seen {self._first_seen[fingerprint]})")
            return False
        self._first_seen[fingerprint] = url
        self.stats["unique_images"] += 1
        return True

    def first_seen(self, fingerprint: str) -> Optional[str]:
        return self._first_seen.get(fingerprint)

    def __contains__(self, fingerprint: str) -> bool:
        return self.contains(fingerprint)

    def __len__(self) -> int:
        return len(self._first_seen)

    def get_stats(self) -> dict:
        """获取去重统计"""
        stats = self.stats.copy()
        if stats["total_checked"] > 0:
            stats["duplicate_rate"] = stats["duplicates_found"] / stats["total_checked"]
        else:
            stats["duplicate_rate"] = 0.0
        return stats
