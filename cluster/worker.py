"""
工作进程入口

每个工作进程一次只执行一个任务：从自己的命令队列读取 start 消息，
在进程内运行爬取引擎，通过共享结果队列回报 started / progress / completed / failed。
命令队列收到 None 时退出。
"""
from typing import Any, Dict
from loguru import logger

from config import Config
from core.engine import run_crawl
from core.logs import setup_logging
from core.options import CrawlOptions
from core.proxy_manager import ProxyManager
from cluster.task import MSG_COMPLETED, MSG_FAILED, MSG_PROGRESS, MSG_START, MSG_STARTED


def run_task(worker_id: int, message: Dict[str, Any], results, proxy_manager: ProxyManager):
    """执行一个 start 消息"""
    task_id = message["task_id"]
    url = message["url"]

    def send(payload: Dict[str, Any]):
        payload["task_id"] = task_id
        results.put((worker_id, payload))

    send({"type": MSG_STARTED})
    logger.info(f"▶️  Task {task_id} started: {url}")

    try:
        options = CrawlOptions.from_mapping(message.get("options") or {})
        report = run_crawl(
            url,
            options,
            proxy_manager=proxy_manager,
            on_progress=lambda percent: send({"type": MSG_PROGRESS, "percent": percent}),
        )
    except Exception as e:
        logger.error(f"❌ Task {task_id} failed: {e}")
        send({"type": MSG_FAILED, "error": str(e) or e.__class__.__name__})
        return

    logger.success(f"✅ Task {task_id} completed: {report.total_images} images")
    send({"type": MSG_COMPLETED, "report": report.to_dict()})


def worker_main(worker_id: int, commands, results, app_config: Config):
    """
    工作进程主循环

    Args:
        worker_id: 工作进程编号
        commands: 本进程专用的命令队列
        results: 所有工作进程共享的结果队列
        app_config: 全局配置
    """
    setup_logging(app_config.log, process_name=f"worker-{worker_id}")
    # 代理状态在本进程的多个任务之间保留
    proxy_manager = ProxyManager.from_config(app_config.proxy, enabled=True)
    logger.info(f"Worker {worker_id} started")

    while True:
        message = commands.get()
        if message is None:
            break
        if message.get("type") != MSG_START:
            logger.warning(f"Worker {worker_id} ignoring unknown message: {message.get('type')}")
            continue
        run_task(worker_id, message, results, proxy_manager)

    logger.info(f"Worker {worker_id} stopped")
