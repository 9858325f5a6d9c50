"""
日志配置模块
"""
import sys
from typing import Optional
from loguru import logger

from config import LogConfig

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
WORKER_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <cyan>{extra[process_name]}</cyan> | "
    "<level>{level: <8}</level> | <level>{message}</level>"
)


def setup_logging(log_config: LogConfig, process_name: Optional[str] = None):
    """
    配置 loguru：彩色终端输出 + 按大小轮转的文件日志

    Args:
        log_config: 日志配置
        process_name: 进程名（工作进程传入，用于区分日志来源）
    """
    logger.remove()

    if process_name:
        logger.configure(extra={"process_name": process_name})
        console_format = WORKER_CONSOLE_FORMAT
    else:
        console_format = CONSOLE_FORMAT

    logger.add(
        sys.stderr,
        format=console_format,
        level=log_config.log_level,
        colorize=True
    )

    log_config.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_config.log_dir / log_config.log_file
    logger.add(
        log_file,
        rotation=log_config.rotation,
        retention=log_config.retention,
        encoding="utf-8",
        level="DEBUG",
        enqueue=process_name is not None
    )
