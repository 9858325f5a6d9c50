"""
数据模型模块

- ImageRecord: 通过全部过滤条件的图片
- CategoryStats: 分类聚合统计
- CrawlReport: 一次爬取结束时的不可变报告
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class DownloadStatus(str, Enum):
    """下载状态（由独立的下载步骤更新）"""
    PENDING = "pending"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


class ImageRecord(BaseModel):
    """图片记录"""
    url: str
    page_url: str
    page_title: str = ""
    category: str
    filename: str
    width: int
    height: int
    size_bytes: int
    extension: str
    fingerprint: Optional[str] = None
    dimensions_known: bool = True
    download_status: DownloadStatus = DownloadStatus.PENDING
    discovered_at: datetime = Field(default_factory=datetime.now)


class CategoryStats(BaseModel):
    """分类统计"""
    count: int = 0
    total_size_bytes: int = 0
    avg_width: float = 0.0
    avg_height: float = 0.0
    page_count: int = 0

    @classmethod
    def from_records(cls, records: List[ImageRecord]) -> "CategoryStats":
        if not records:
            return cls()
        count = len(records)
        return cls(
            count=count,
            total_size_bytes=sum(r.size_bytes for r in records),
            avg_width=round(sum(r.width for r in records) / count, 2),
            avg_height=round(sum(r.height for r in records) / count, 2),
            page_count=len({r.page_url for r in records}),
        )


class CrawlReport(BaseModel):
    """爬取报告"""

    model_config = ConfigDict(frozen=True)

    start_url: str
    total_images: int = 0
    pages_visited: int = 0
    pages_failed: int = 0
    discovered: int = 0
    duplicates: int = 0
    filtered: int = 0
    failed: int = 0
    started_at: datetime
    finished_at: datetime
    elapsed_seconds: float = 0.0
    categories: Dict[str, CategoryStats] = Field(default_factory=dict)
    images_by_category: Dict[str, List[ImageRecord]] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        start_url: str,
        registry: Dict[str, List[ImageRecord]],
        stats: Dict[str, int],
        pages_visited: int,
        started_at: datetime,
        finished_at: Optional[datetime] = None,
    ) -> "CrawlReport":
        """
        由爬取状态生成报告

        Args:
            start_url: 起始URL
            registry: 分类 -> 图片记录（保持发现顺序）
            stats: 计数器（discovered/duplicates/filtered/failed/pages_failed）
            pages_visited: 已访问页面数
            started_at: 开始时间
            finished_at: 结束时间（默认当前时间）
        """
        finished_at = finished_at or datetime.now()
        images = {category: list(records) for category, records in registry.items()}
        return cls(
            start_url=start_url,
            total_images=sum(len(records) for records in images.values()),
            pages_visited=pages_visited,
            pages_failed=stats.get("pages_failed", 0),
            discovered=stats.get("discovered", 0),
            duplicates=stats.get("duplicates", 0),
            filtered=stats.get("filtered", 0),
            failed=stats.get("failed", 0),
            started_at=started_at,
            finished_at=finished_at,
            elapsed_seconds=round((finished_at - started_at).total_seconds(), 3),
            categories={category: CategoryStats.from_records(records) for category, records in images.items()},
            images_by_category=images,
        )

    def all_images(self) -> List[ImageRecord]:
        return [record for records in self.images_by_category.values() for record in records]

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlReport":
        return cls.model_validate(data)
