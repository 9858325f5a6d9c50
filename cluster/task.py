"""
任务与工作进程数据结构

任务状态：queued -> assigned -> running -> completed / failed
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from core.models import CrawlReport
from core.options import CrawlOptions

# 协调器 -> 工作进程
MSG_START = "start"
# 工作进程 -> 协调器
MSG_STARTED = "started"
MSG_COMPLETED = "completed"
MSG_FAILED = "failed"
MSG_PROGRESS = "progress"


class TaskState(str, Enum):
    QUEUED = "queued"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


@dataclass
class Task:
    """一个爬取任务（由协调器持有）"""
    url: str
    options: CrawlOptions
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: TaskState = TaskState.QUEUED
    worker_id: Optional[int] = None
    report: Optional[CrawlReport] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def transition(self, state: TaskState, worker_id: Optional[int] = None):
        self.state = state
        if worker_id is not None:
            self.worker_id = worker_id
        self.updated_at = datetime.now()

    def start_message(self) -> Dict[str, Any]:
        return {
            "type": MSG_START,
            "task_id": self.id,
            "url": self.url,
            "options": self.options.to_dict()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.id,
            "url": self.url,
            "state": self.state.value,
            "worker_id": self.worker_id,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }


@dataclass
class WorkerHandle:
    """工作进程句柄"""
    worker_id: int
    process: Any
    commands: Any
    busy: bool = False
    current_task: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.worker_id,
            "pid": self.pid,
            "busy": self.busy,
            "current_task": self.current_task
        }


class LookupStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass
class TaskLookup:
    """get_result 的返回值"""
    task_id: str
    status: LookupStatus
    report: Optional[CrawlReport] = None
    error: Optional[str] = None
    state: Optional[TaskState] = None

    @property
    def found(self) -> bool:
        return self.status != LookupStatus.NOT_FOUND

    def to_dict(self) -> Dict[str, Any]:
        data = {"task_id": self.task_id, "status": self.status.value}
        if self.state is not None:
            data["state"] = self.state.value
        if self.report is not None:
            data["report"] = self.report.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data
