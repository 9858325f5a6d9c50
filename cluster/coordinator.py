"""
任务协调器（主进程）

- 启动固定数量的工作进程：min(CPU 数, max_workers)
- 每个工作进程一个命令队列，所有工作进程共用一个结果队列
- 监听线程按顺序处理结果消息，所有状态更新在同一把锁下完成
- 看护线程监测进程退出：移除句柄，冷却后重启，进程上的任务按配置标记为失败
"""
import os
import threading
import time
from collections import deque
from multiprocessing import connection
import multiprocessing
import queue
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union
from loguru import logger

from config import Config, config
from core.engine import validate_start_url
from core.errors import CrawlerError, NoCapacity, WorkerLost
from core.models import CrawlReport
from core.options import CrawlOptions
from cluster.result_store import ResultStore
from cluster.task import (
    MSG_COMPLETED,
    MSG_FAILED,
    MSG_PROGRESS,
    MSG_STARTED,
    LookupStatus,
    Task,
    TaskLookup,
    TaskState,
    WorkerHandle,
)
from cluster.worker import worker_main

ProgressListener = Callable[[str, float], None]
SATURATION_POLICIES = ("reject", "queue")


class TaskCoordinator:
    """任务协调器"""

    def __init__(
        self,
        app_config: Optional[Config] = None,
        max_workers: Optional[int] = None,
        on_saturation: Optional[str] = None,
        result_store: Optional[ResultStore] = None,
    ):
        """
        初始化协调器

        Args:
            app_config: 全局配置（传给工作进程）
            max_workers: 最大工作进程数（默认取配置）
            on_saturation: 无空闲进程时的策略 reject / queue
            result_store: 结果存储（默认按配置创建）
        """
        self.config = app_config or config
        cluster_config = self.config.cluster
        self.max_workers = max_workers or cluster_config.max_workers
        self.pool_size = max(1, min(os.cpu_count() or 1, self.max_workers))
        self.on_saturation = on_saturation or cluster_config.on_saturation
        if self.on_saturation not in SATURATION_POLICIES:
            raise ValueError(f"on_saturation must be one of {SATURATION_POLICIES}, got {self.on_saturation!r}")
        self.restart_delay = cluster_config.restart_delay
        self.fail_lost_tasks = cluster_config.fail_lost_tasks
        self.result_store = result_store or ResultStore.from_config(self.config.cache)

        self._ctx = multiprocessing.get_context("spawn")
        self.results = self._ctx.Queue()
        self.workers: Dict[int, WorkerHandle] = {}
        self.tasks: Dict[str, Task] = {}
        self.pending: Deque[str] = deque()
        self._listeners: List[ProgressListener] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._next_worker_id = 1
        self._running = False
        self._started_at: Optional[float] = None
        self.stats = {
            "submitted": 0,
            "rejected": 0,
            "completed": 0,
            "failed": 0,
            "lost": 0,
            "restarts": 0
        }

    # ========================================================================
    # 生命周期
    # ========================================================================

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    def start(self):
        """启动工作进程和后台线程"""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._stop.clear()
            self._started_at = time.time()
            logger.info(f"Coordinator {os.getpid()} starting {self.pool_size} workers")
            for _ in range(self.pool_size):
                self._spawn_worker()

        self._threads = [
            threading.Thread(target=self._listen, name="coordinator-listener", daemon=True),
            threading.Thread(target=self._watch, name="coordinator-watcher", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def shutdown(self, timeout: float = 5.0):
        """停止所有工作进程"""
        with self._lock:
            if not self._running:
                return
            self._running = False
            handles = list(self.workers.values())

        logger.info(f"Stopping {len(handles)} workers...")
        for handle in handles:
            handle.commands.put(None)
        for handle in handles:
            process = handle.process
            process.join(timeout=timeout)
            if process.is_alive():
                logger.warning(f"Terminating worker {handle.worker_id} (pid {process.pid})")
                process.terminate()
                process.join(timeout=1.0)
                if process.is_alive():
                    logger.warning(f"Force killing worker {handle.worker_id}")
                    process.kill()

        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []

        with self._lock:
            self.workers.clear()
        logger.info("Coordinator stopped")

    def _spawn_worker(self) -> WorkerHandle:
        """启动一个工作进程（调用方持有锁）"""
        worker_id = self._next_worker_id
        self._next_worker_id += 1
        commands = self._ctx.Queue()
        process = self._ctx.Process(
            target=worker_main,
            args=(worker_id, commands, self.results, self.config),
            name=f"crawler-worker-{worker_id}",
            daemon=True,
        )
        process.start()
        handle = WorkerHandle(worker_id=worker_id, process=process, commands=commands)
        self.workers[worker_id] = handle
        logger.info(f"Worker {worker_id} spawned (pid {process.pid})")
        return handle

    def _restart_worker(self):
        with self._lock:
            if not self._running:
                return
            self._spawn_worker()
            self.stats["restarts"] += 1
            self._dispatch()

    # ========================================================================
    # 后台线程
    # ========================================================================

    def _listen(self):
        """结果队列监听线程"""
        while not self._stop.is_set():
            try:
                worker_id, message = self.results.get(timeout=0.5)
            except queue.Empty:
                continue
            except (EOFError, OSError):
                break
            self._handle_message(worker_id, message)

    def _watch(self):
        """进程退出看护线程"""
        while not self._stop.is_set():
            with self._lock:
                sentinels = {handle.process.sentinel: worker_id for worker_id, handle in self.workers.items()}
            if not sentinels:
                self._stop.wait(0.2)
                continue
            for sentinel in connection.wait(list(sentinels), timeout=0.5):
                self._on_worker_exit(sentinels[sentinel])

    def _on_worker_exit(self, worker_id: int):
        with self._lock:
            handle = self.workers.pop(worker_id, None)
            if handle is None:
                return
            logger.warning(f"Worker {worker_id} (pid {handle.pid}) exited with code {handle.process.exitcode}")

            task = self.tasks.get(handle.current_task) if handle.current_task else None
            if task is not None and not task.state.terminal:
                self.stats["lost"] += 1
                error = WorkerLost(f"Worker {worker_id} exited while running task {task.id}", context={"worker_id": worker_id})
                if self.fail_lost_tasks:
                    self._finish(task, TaskState.FAILED, error=str(error))
                else:
                    logger.warning(f"Task {task.id} left unresolved: {error}")

            if not self._running:
                return
            timer = threading.Timer(self.restart_delay, self._restart_worker)
            timer.daemon = True
            timer.start()

    # ========================================================================
    # 消息处理
    # ========================================================================

    def _handle_message(self, worker_id: int, message: Dict[str, Any]):
        """处理工作进程消息"""
        msg_type = message.get("type")
        task_id = message.get("task_id")

        if msg_type == MSG_PROGRESS:
            self._broadcast_progress(task_id, message.get("percent", 0.0))
            return

        with self._lock:
            handle = self.workers.get(worker_id)
            task = self.tasks.get(task_id)
            if task is None:
                logger.warning(f"Message for unknown task {task_id} from worker {worker_id}: {msg_type}")
                return

            # 任务已有结论（例如进程丢失后已判失败），迟到的消息不改变结果
            if task.state.terminal:
                logger.warning(f"Ignoring {msg_type} from worker {worker_id} for finished task {task_id} ({task.state.value})")
                if msg_type in (MSG_COMPLETED, MSG_FAILED):
                    self._release(handle, task_id)
                    self._dispatch()
                return

            if msg_type == MSG_STARTED:
                if task.state == TaskState.ASSIGNED:
                    task.transition(TaskState.RUNNING, worker_id)
                if handle is not None:
                    handle.busy = True
                    handle.current_task = task_id

            elif msg_type == MSG_COMPLETED:
                task.report = CrawlReport.from_dict(message["report"])
                self._finish(task, TaskState.COMPLETED)
                self._release(handle, task_id)
                self._dispatch()

            elif msg_type == MSG_FAILED:
                self._finish(task, TaskState.FAILED, error=message.get("error") or "unknown error")
                self._release(handle, task_id)
                self._dispatch()

            else:
                logger.warning(f"Unknown message type from worker {worker_id}: {msg_type}")

    def _finish(self, task: Task, state: TaskState, error: Optional[str] = None):
        """任务进入终态并保存结果（调用方持有锁）"""
        task.transition(state)
        task.error = error
        if state == TaskState.COMPLETED:
            payload = {"status": LookupStatus.COMPLETED.value, "report": task.report.to_dict()}
            self.stats["completed"] += 1
            logger.success(f"✅ Task {task.id} completed ({task.report.total_images} images)")
        else:
            payload = {"status": LookupStatus.FAILED.value, "error": error}
            self.stats["failed"] += 1
            logger.error(f"❌ Task {task.id} failed: {error}")
        self.result_store.put(task.id, payload)

    @staticmethod
    def _release(handle: Optional[WorkerHandle], task_id: str):
        if handle is not None and handle.current_task == task_id:
            handle.busy = False
            handle.current_task = None

    def _broadcast_progress(self, task_id: str, percent: float):
        logger.debug(f"Task {task_id} progress: {percent}%")
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(task_id, percent)
            except Exception as e:
                logger.warning(f"Progress listener error: {e}")

    def add_progress_listener(self, listener: ProgressListener):
        with self._lock:
            self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ========================================================================
    # 任务分配
    # ========================================================================

    def _idle_worker(self) -> Optional[WorkerHandle]:
        for worker_id in sorted(self.workers):
            handle = self.workers[worker_id]
            if not handle.busy:
                return handle
        return None

    def _assign(self, task: Task, handle: WorkerHandle):
        """把任务交给空闲进程（调用方持有锁）"""
        handle.busy = True
        handle.current_task = task.id
        task.transition(TaskState.ASSIGNED, handle.worker_id)
        handle.commands.put(task.start_message())
        logger.info(f"📤 Task {task.id} assigned to worker {handle.worker_id}: {task.url}")

    def _dispatch(self):
        """按先进先出把排队任务分给空闲进程（调用方持有锁）"""
        while self.pending:
            handle = self._idle_worker()
            if handle is None:
                return
            task = self.tasks.get(self.pending.popleft())
            if task is not None and task.state == TaskState.QUEUED:
                self._assign(task, handle)

    def submit(self, url: str, options: Union[CrawlOptions, Dict[str, Any], None] = None) -> str:
        """
        提交任务

        Args:
            url: 起始URL
            options: 爬取参数（字典会被校验为 CrawlOptions）

        Returns:
            任务ID

        Raises:
            InvalidStartURL: URL非法
            pydantic.ValidationError: 参数非法
            NoCapacity: reject 策略下没有空闲进程
        """
        url = validate_start_url(url)
        if options is None:
            options = CrawlOptions.from_config(self.config.crawler, self.config.proxy)
        elif not isinstance(options, CrawlOptions):
            options = CrawlOptions.from_mapping(options)

        with self._lock:
            task = Task(url=url, options=options)
            handle = self._idle_worker()
            if handle is None:
                if self.on_saturation != "queue":
                    self.stats["rejected"] += 1
                    raise NoCapacity("No available workers", context={"url": url})
                self.tasks[task.id] = task
                self.pending.append(task.id)
                self.stats["submitted"] += 1
                logger.info(f"⏳ Task {task.id} queued: {url} ({len(self.pending)} pending)")
                return task.id

            self.tasks[task.id] = task
            self.stats["submitted"] += 1
            self._assign(task, handle)
            return task.id

    def submit_batch(self, urls: Iterable[str], options: Union[CrawlOptions, Dict[str, Any], None] = None) -> List[str]:
        """批量提交，跳过提交失败的URL，只返回成功的任务ID"""
        if isinstance(options, dict):
            options = CrawlOptions.from_mapping(options)
        task_ids = []
        for url in urls:
            try:
                task_ids.append(self.submit(url, options))
            except (CrawlerError, ValueError) as e:
                logger.warning(f"⚠️  Failed to submit {url}: {e}")
        return task_ids

    def cancel(self, task_id: str) -> bool:
        """
        取消排队中的任务

        已分配或运行中的任务不能中途取消，返回 False。
        """
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None or task.state != TaskState.QUEUED:
                return False
            try:
                self.pending.remove(task_id)
            except ValueError:
                pass
            self._finish(task, TaskState.FAILED, error="cancelled")
            return True

    # ========================================================================
    # 查询
    # ========================================================================

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self.tasks.get(task_id)

    def get_result(self, task_id: str) -> TaskLookup:
        """
        查询任务结果：先查内存中的任务，再查结果存储（含 Redis）

        未结束的任务返回 processing。
        """
        with self._lock:
            task = self.tasks.get(task_id)
            if task is not None:
                if not task.state.terminal:
                    return TaskLookup(task_id, LookupStatus.PROCESSING, state=task.state)
                if task.state == TaskState.COMPLETED:
                    return TaskLookup(task_id, LookupStatus.COMPLETED, report=task.report, state=task.state)
                return TaskLookup(task_id, LookupStatus.FAILED, error=task.error, state=task.state)

        payload = self.result_store.get(task_id)
        if payload is None:
            return TaskLookup(task_id, LookupStatus.NOT_FOUND)
        if payload.get("status") == LookupStatus.COMPLETED.value:
            return TaskLookup(task_id, LookupStatus.COMPLETED, report=CrawlReport.from_dict(payload["report"]))
        return TaskLookup(task_id, LookupStatus.FAILED, error=payload.get("error"))

    def wait(self, task_ids: Iterable[str], timeout: Optional[float] = None,
             poll_interval: float = 0.5, on_done: Optional[Callable[[TaskLookup], None]] = None) -> Dict[str, TaskLookup]:
        """
        等待任务结束（用于命令行批量模式）

        Args:
            task_ids: 任务ID列表
            timeout: 超时（秒），None 表示一直等待
            poll_interval: 轮询间隔
            on_done: 每个任务结束时的回调

        Returns:
            {任务ID: TaskLookup}，超时时包含未结束任务的 processing 状态
        """
        remaining = list(task_ids)
        results: Dict[str, TaskLookup] = {}
        deadline = None if timeout is None else time.monotonic() + timeout
        while remaining:
            for task_id in list(remaining):
                lookup = self.get_result(task_id)
                if lookup.status != LookupStatus.PROCESSING:
                    results[task_id] = lookup
                    remaining.remove(task_id)
                    if on_done:
                        on_done(lookup)
            if not remaining:
                break
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(poll_interval)
        for task_id in remaining:
            results[task_id] = self.get_result(task_id)
        return results

    def worker_stats(self) -> Dict[str, Any]:
        with self._lock:
            handles = [self.workers[worker_id] for worker_id in sorted(self.workers)]
            busy = sum(1 for handle in handles if handle.busy)
            return {
                "total": len(handles),
                "busy": busy,
                "idle": len(handles) - busy,
                "workers": [handle.to_dict() for handle in handles]
            }

    def cluster_stats(self) -> Dict[str, Any]:
        """集群统计（进程、任务、结果存储）"""
        workers = self.worker_stats()
        with self._lock:
            by_state = {state.value: 0 for state in TaskState}
            for task in self.tasks.values():
                by_state[task.state.value] += 1
            tasks = {"by_state": by_state, "pending": len(self.pending)}
            stats = self.stats.copy()
            uptime = time.time() - self._started_at if self._started_at else 0.0
        return {
            "master": {"pid": os.getpid(), "uptime": round(uptime, 1), "pool_size": self.pool_size},
            "workers": workers,
            "tasks": tasks,
            "stats": stats,
            "result_store": self.result_store.info()
        }
