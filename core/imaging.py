"""
图片探测模块
"""
import io
from dataclasses import dataclass
from typing import Optional, Tuple
from loguru import logger
from PIL import Image, UnidentifiedImageError

from core.errors import DecodeFailure

# 无法解码时的尺寸
FALLBACK_DIMENSIONS: Tuple[int, int] = (100, 100)


@dataclass
class ImageProbe:
    """图片探测结果"""
    width: int
    height: int
    size_bytes: int
    decoded: bool
    image: Optional[Image.Image] = None
    format: Optional[str] = None


def decode_image(data: bytes, url: str = "") -> Image.Image:
    """
    解码图片字节

    Raises:
        DecodeFailure: 不是可识别的图片或数据损坏
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeFailure(f"Cannot decode image {url}: {e}", context={"url": url}) from e


def probe_image(data: bytes, url: str = "") -> ImageProbe:
    """
    读取图片尺寸

    解码失败不抛异常，返回 FALLBACK_DIMENSIONS 且 decoded=False。

    Args:
        data: 图片字节
        url: 图片URL（仅用于日志）
    """
    try:
        img = decode_image(data, url)
    except DecodeFailure as e:
        logger.debug(f"Image decode failed, using fallback dimensions: {e}")
        width, height = FALLBACK_DIMENSIONS
        return ImageProbe(width=width, height=height, size_bytes=len(data), decoded=False)

    return ImageProbe(
        width=img.width,
        height=img.height,
        size_bytes=len(data),
        decoded=True,
        image=img,
        format=img.format.lower() if img.format else None,
    )
