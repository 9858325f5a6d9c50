"""
异常定义模块

所有爬虫异常继承 CrawlerError，携带 message / code / context，
便于日志记录和序列化为任务失败信息。
"""
from typing import Any, Dict, Optional


class CrawlerError(Exception):
    """爬虫异常基类"""

    code = "CRAWLER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": self.context}

    def __str__(self) -> str:
        return self.message


class FetchFailure(CrawlerError):
    """
    页面或图片请求失败

    transport=True 表示网络层错误（连接失败、超时），可通过换代理重试；
    HTTP 状态码错误为 transport=False。
    """

    code = "FETCH_FAILURE"

    def __init__(self, url: str, reason: str, status: Optional[int] = None, transport: bool = True):
        super().__init__(f"Failed to fetch {url}: {reason}", context={"url": url, "status": status})
        self.url = url
        self.reason = reason
        self.status = status
        self.transport = transport


class DecodeFailure(CrawlerError):
    """图片字节无法解码"""

    code = "DECODE_FAILURE"


class PolicyDenied(CrawlerError):
    """robots.txt 禁止抓取起始URL"""

    code = "POLICY_DENIED"


DisallowedByPolicy = PolicyDenied


class InvalidStartURL(CrawlerError, ValueError):
    """起始URL不是合法的 http(s) 绝对地址"""

    code = "INVALID_START_URL"


class NoCapacity(CrawlerError):
    """没有空闲工作进程"""

    code = "NO_CAPACITY"


class WorkerLost(CrawlerError):
    """工作进程在任务执行中退出"""

    code = "WORKER_LOST"
