"""
爬取参数模块

CrawlOptions 在任务提交时构造一次，校验全部参数，之后不可修改。
"""
from typing import Any, FrozenSet, Literal, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from config import CrawlerConfig, ProxyConfig, DEFAULT_USER_AGENT, config

CategoryMode = Literal["path", "page", "domain"]
RateLimitScope = Literal["url", "host"]

DEFAULT_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})


class CrawlOptions(BaseModel):
    """单次爬取的参数（不可变）"""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    max_depth: int = Field(default=2, ge=0)
    max_pages: int = Field(default=50, gt=0)
    category_mode: CategoryMode = "path"
    allowed_extensions: FrozenSet[str] = Field(default=DEFAULT_EXTENSIONS)
    min_width: int = Field(default=100, ge=0)
    min_height: int = Field(default=100, ge=0)
    max_image_size_bytes: int = Field(default=10240 * 1024, gt=0)
    jpeg_quality: int = Field(default=80, ge=1, le=100)
    detect_duplicates: bool = True
    respect_robots: bool = False
    request_delay_ms: int = Field(default=0, ge=0)
    request_timeout_ms: int = Field(default=10000, gt=0)
    concurrent_requests: int = Field(default=3, gt=0)
    use_proxy: bool = False
    user_agent: str = Field(default=DEFAULT_USER_AGENT, min_length=1)
    rotate_user_agent: bool = False
    rate_limit_requests: int = Field(default=10, gt=0)
    rate_limit_period_ms: int = Field(default=1000, gt=0)
    rate_limit_scope: RateLimitScope = "url"

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set, frozenset)):
            normalized = {str(ext).strip().lower().lstrip(".") for ext in value}
            normalized.discard("")
            if not normalized:
                raise ValueError("allowed_extensions must not be empty")
            return frozenset(normalized)
        return value

    @property
    def request_timeout(self) -> float:
        """请求超时（秒）"""
        return self.request_timeout_ms / 1000

    @property
    def request_delay(self) -> float:
        """请求间隔（秒）"""
        return self.request_delay_ms / 1000

    @property
    def rate_limit_period(self) -> float:
        return self.rate_limit_period_ms / 1000

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None, **overrides) -> "CrawlOptions":
        """
        从字典构造（接受 camelCase 或 snake_case 键）

        未知键或非法值抛出 pydantic.ValidationError
        """
        merged = dict(data or {})
        merged.update(overrides)
        return cls.model_validate(merged)

    @classmethod
    def from_config(
        cls,
        crawler_config: Optional[CrawlerConfig] = None,
        proxy_config: Optional[ProxyConfig] = None,
        **overrides
    ) -> "CrawlOptions":
        """以全局配置为默认值构造，overrides 优先"""
        crawler_config = crawler_config or config.crawler
        proxy_config = proxy_config or config.proxy
        data = crawler_config.model_dump()
        data["max_image_size_bytes"] = data.pop("max_image_size_kb") * 1024
        data["use_proxy"] = proxy_config.use_proxy
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        """JSON 兼容的字典（用于进程间传递）"""
        data = self.model_dump(mode="json")
        data["allowed_extensions"] = sorted(self.allowed_extensions)
        return data
