"""
结构化日志与指标模块

- 日志：每个模块一个 logger，JSON（或文本）输出到 stdout
- 指标：进程内计数器 + 耗时统计，由 /metrics 暴露
"""
import asyncio
import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from functools import wraps

from pawmatch.config import settings

# 匹配链路上的计数器（调用次数 / 失败次数 / 兜底次数）
COUNTERS = (
    "match_requests",
    "recommend_requests",
    "evaluate_requests",
    "llm_requests",
    "embedding_requests",
)
EVENTS = (
    "normalizer_fallbacks",
    "stream_sessions",
    "stream_timeouts",
    "pets_ingested",
)


class StructuredFormatter(logging.Formatter):
    """结构化JSON日志格式化器"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": settings.APP_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        # 指标装饰器附带的字段
        for key in ("metric", "duration_ms", "outcome"):
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


class MetricsCollector:
    """指标收集器（计数器 + 耗时）"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {}
        for name in COUNTERS:
            self.metrics[name] = 0
            self.metrics[f"{name}_errors"] = 0
        for name in EVENTS:
            self.metrics[name] = 0
        self.timings: Dict[str, Dict[str, float]] = {}

    def increment(self, metric: str, value: int = 1):
        """增加计数（未登记的指标忽略）"""
        if metric in self.metrics:
            self.metrics[metric] += value

    def observe(self, metric: str, seconds: float):
        """记录一次耗时"""
        timing = self.timings.setdefault(metric, {"count": 0, "total_ms": 0.0, "max_ms": 0.0})
        elapsed_ms = seconds * 1000.0
        timing["count"] += 1
        timing["total_ms"] += elapsed_ms
        timing["max_ms"] = max(timing["max_ms"], elapsed_ms)

    def get(self, metric: str) -> Any:
        """获取计数"""
        return self.metrics.get(metric, 0)

    def get_all(self) -> Dict[str, Any]:
        """计数器快照；耗时按平均/最大值汇总在 latency 下"""
        snapshot: Dict[str, Any] = dict(self.metrics)
        snapshot["latency"] = {
            name: {
                "count": int(timing["count"]),
                "avg_ms": round(timing["total_ms"] / timing["count"], 2),
                "max_ms": round(timing["max_ms"], 2),
            }
            for name, timing in self.timings.items()
            if timing["count"]
        }
        return snapshot


# 全局指标收集器
metrics = MetricsCollector()


def setup_logger(
    name: str = "pawmatch",
    level: Optional[str] = None
) -> logging.Logger:
    """
    获取模块日志记录器（同名 logger 只配置一次）

    Args:
        name: 日志记录器名称（通常为 __name__）
        level: 日志级别（默认读取 LOG_LEVEL）
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper()))

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)
    if settings.LOG_FORMAT == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def _record(func, metric: str, started: float, failed: bool):
    elapsed = time.perf_counter() - started
    metrics.increment(f"{metric}_errors" if failed else metric)
    metrics.observe(metric, elapsed)
    logging.getLogger(func.__module__).debug(
        f"{func.__qualname__} 耗时 {elapsed * 1000:.1f}ms",
        extra={
            "metric": metric,
            "duration_ms": round(elapsed * 1000, 1),
            "outcome": "error" if failed else "ok",
        },
    )


def log_metric(metric: str):
    """装饰器：统计调用次数、失败次数与耗时（同步/异步函数均可）"""
    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception:
                    _record(func, metric, started, failed=True)
                    raise
                _record(func, metric, started, failed=False)
                return result
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception:
                _record(func, metric, started, failed=True)
                raise
            _record(func, metric, started, failed=False)
            return result
        return sync_wrapper

    return decorator
