"""
配置管理模块 - 站点图片爬虫
统一配置管理，支持 .env 与环境变量覆盖
"""
from pydantic import BaseModel, Field
from typing import Optional, List
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# 项目根目录
BASE_DIR = Path(__file__).parent

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class CrawlerConfig(BaseModel):
    """爬虫配置（CrawlOptions 的默认值来源）"""
    # 爬取范围
    max_depth: int = Field(default=2, description="最大爬取深度")
    max_pages: int = Field(default=50, description="最大页面数")
    category_mode: str = Field(default="path", description="分类模式: path/page/domain")

    # 图片过滤
    allowed_extensions: List[str] = Field(
        default_factory=lambda: ["jpg", "jpeg", "png", "gif", "webp"],
        description="允许的图片扩展名"
    )
    min_width: int = Field(default=100, description="最小宽度")
    min_height: int = Field(default=100, description="最小高度")
    max_image_size_kb: int = Field(default=10240, description="最大图片大小（KB）")
    jpeg_quality: int = Field(default=80, description="JPEG质量")
    detect_duplicates: bool = Field(default=True, description="启用图片去重")

    # 请求控制
    respect_robots: bool = Field(default=False, description="是否遵守 robots.txt")
    request_delay_ms: int = Field(default=0, description="请求间隔（毫秒）")
    request_timeout_ms: int = Field(default=10000, description="请求超时（毫秒）")
    concurrent_requests: int = Field(default=3, description="并发请求数")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent")
    rotate_user_agent: bool = Field(default=False, description="是否轮换UA")

    # 限速
    rate_limit_requests: int = Field(default=10, description="每个周期允许的请求数")
    rate_limit_period_ms: int = Field(default=1000, description="限速周期（毫秒）")
    rate_limit_scope: str = Field(default="url", description="限速键: url/host")


class ProxyConfig(BaseModel):
    """代理配置"""
    use_proxy: bool = Field(default=False, description="是否使用代理")
    proxy_list: List[str] = Field(default_factory=list, description="代理列表")
    rotation_interval: float = Field(default=10.0, description="自动轮换间隔（秒），0 表示关闭")
    failure_threshold: int = Field(default=3, description="失败超过该次数后拉黑")
    test_url: str = Field(default="https://httpbin.org/ip", description="代理测试地址")
    test_timeout: float = Field(default=5.0, description="代理测试超时（秒）")


class ClusterConfig(BaseModel):
    """分布式任务配置"""
    max_workers: int = Field(default=4, description="最大工作进程数")
    restart_delay: float = Field(default=1.0, description="工作进程重启冷却（秒）")
    on_saturation: str = Field(default="reject", description="无空闲进程时: reject/queue")
    fail_lost_tasks: bool = Field(default=True, description="工作进程退出时将其任务标记为失败")


class CacheConfig(BaseModel):
    """结果缓存配置（Redis）"""
    redis_url: Optional[str] = Field(default=None, description="Redis连接URL")
    result_ttl: int = Field(default=3600, description="结果缓存时间（秒）")
    key_prefix: str = Field(default="task:", description="结果键前缀")


class LogConfig(BaseModel):
    """日志配置"""
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=BASE_DIR / "logs", description="日志目录")
    log_file: str = Field(default="crawler.log", description="日志文件名")
    rotation: str = Field(default="100 MB", description="日志轮转大小")
    retention: str = Field(default="30 days", description="日志保留时间")


class Config(BaseModel):
    """全局配置"""
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    log: LogConfig = Field(default_factory=LogConfig)


# ============================================================================
# 环境变量解析
# ============================================================================

def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str) -> List[str]:
    """逗号分隔的列表，忽略空项"""
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_config_from_env() -> Config:
    """从环境变量加载配置"""
    config_data = {
        "crawler": {
            "max_depth": int(os.getenv("MAX_CRAWL_DEPTH", "2")),
            "max_pages": int(os.getenv("MAX_PAGES", "50")),
            "category_mode": os.getenv("CATEGORY_MODE", "path"),
            "request_delay_ms": int(os.getenv("REQUEST_DELAY_MS", "0")),
            "request_timeout_ms": int(os.getenv("REQUEST_TIMEOUT", "10000")),
            "concurrent_requests": int(os.getenv("CONCURRENT_REQUESTS", "3")),
            "respect_robots": _env_bool("RESPECT_ROBOTS"),
            "rotate_user_agent": _env_bool("ROTATE_USER_AGENT"),
        },
        "proxy": {
            "use_proxy": _env_bool("USE_PROXY"),
            "proxy_list": _env_list("PROXY_LIST"),
            "rotation_interval": int(os.getenv("PROXY_ROTATION_INTERVAL", "10000")) / 1000,
        },
        "cluster": {
            "max_workers": int(os.getenv("MAX_WORKERS", "4")),
            "on_saturation": os.getenv("CLUSTER_ON_SATURATION", "reject"),
            "fail_lost_tasks": _env_bool("FAIL_LOST_TASKS", "true"),
        },
        "cache": {
            "redis_url": os.getenv("REDIS_URL") or None,
            "result_ttl": int(os.getenv("CACHE_TTL", "3600")),
        },
        "log": {
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
        }
    }
    return Config(**config_data)


# 全局配置实例（默认从环境变量加载）
config = load_config_from_env()
