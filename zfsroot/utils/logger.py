"""zfsroot 日志配置

提供统一的日志配置，支持普通文本和结构化 JSON 两种控制台输出格式，
以及按构建名落盘的持久化构建事件日志（<status_dir>/<build>.log）。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# 构建事件专用 logger：阶段开始/完成等事件同时输出到控制台和构建日志文件
BUILD_LOGGER = "zfsroot.build"

HUMAN_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
BUILD_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于 CI 流水线消费

    输出格式:
        {"timestamp": "...", "level": "INFO", "logger": "...", "message": "...",
         "module": "...", "function": "...", "line": 42, "exception": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            # 使用 record.created，记录事件发生时间而非格式化时间
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        build = getattr(record, "build", None)
        if build:
            log_entry["build"] = build
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        json_output: 为 True 时使用 JSON 格式（适用于 CI），否则使用人类可读格式

    说明:
        - 输出到 stderr
        - 自动清理已有 handlers，避免重复输出
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(HUMAN_FORMAT))
    root.addHandler(handler)


def get_build_logger() -> logging.Logger:
    """获取构建事件 logger"""
    return logging.getLogger(BUILD_LOGGER)


def attach_build_log(path: str | Path) -> logging.Handler:
    """为构建事件 logger 追加一个文件 handler，返回该 handler 以便之后移除

    文件以追加模式打开，同一构建多次续跑的事件会连续记录在一起。
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(BUILD_LOG_FORMAT))
    build_logger = get_build_logger()
    if build_logger.level == logging.NOTSET:
        # 构建事件至少记录 INFO，不受控制台日志级别影响
        build_logger.setLevel(logging.INFO)
    build_logger.addHandler(handler)
    return handler


def detach_build_log(handler: logging.Handler | None) -> None:
    """移除并关闭 attach_build_log 返回的 handler"""
    if handler is None:
        return
    get_build_logger().removeHandler(handler)
    handler.close()


def reset_logging() -> None:
    """重置根日志器配置（常用于测试环境）"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
