"""
分布式任务模块

- coordinator: 主进程任务协调器（进程池、任务状态、结果查询）
- worker: 工作进程入口
- result_store: 内存 + Redis 结果存储
- task: 任务与进程句柄数据结构
"""
from cluster.task import Task, TaskState, TaskLookup, LookupStatus, WorkerHandle
from cluster.result_store import ResultStore
from cluster.coordinator import TaskCoordinator

__all__ = [
    'Task',
    'TaskState',
    'TaskLookup',
    'LookupStatus',
    'WorkerHandle',
    'ResultStore',
    'TaskCoordinator',
]
