"""
核心模块

包含爬取相关组件：
- options: 爬取参数（不可变）
- rate_gate: 按键滑动窗口限速
- proxy_manager: 代理轮换与黑名单
- deduplicator: 两级图片指纹与去重索引
- parser / fetcher / imaging / categorizer: 页面解析、抓取、尺寸探测、分类命名
- engine: 爬取引擎
"""
from .errors import (
    CrawlerError,
    FetchFailure,
    DecodeFailure,
    PolicyDenied,
    DisallowedByPolicy,
    InvalidStartURL,
    NoCapacity,
    WorkerLost,
)
from .options import CrawlOptions
from .models import CrawlReport, ImageRecord, CategoryStats, DownloadStatus
from .rate_gate import RateGate
from .proxy_manager import ProxyManager, ProxyEndpoint
from .deduplicator import DedupIndex, compute_fingerprint
from .engine import CrawlEngine, run_crawl

__all__ = [
    'CrawlerError',
    'FetchFailure',
    'DecodeFailure',
    'PolicyDenied',
    'DisallowedByPolicy',
    'InvalidStartURL',
    'NoCapacity',
    'WorkerLost',
    'CrawlOptions',
    'CrawlReport',
    'ImageRecord',
    'CategoryStats',
    'DownloadStatus',
    'RateGate',
    'ProxyManager',
    'ProxyEndpoint',
    'DedupIndex',
    'compute_fingerprint',
    'CrawlEngine',
    'run_crawl',
]
