"""
SSE（Server-Sent Events）响应工具
"""
from typing import AsyncIterator
from fastapi.responses import StreamingResponse
import json

from pawmatch.services.stream_relay import StreamEvent
from pawmatch.logs import setup_logger

logger = setup_logger(__name__)


def format_event(event: str, payload: dict) -> str:
    """格式化单个SSE事件"""
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def event_stream(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """
    流式事件 -> SSE文本

    Args:
        events: StreamRelay.events() 产出的 (事件, 内容)
    """
    try:
        async for event, chunk in events:
            if event == "delta":
                # 发送增量内容
                yield format_event("delta", {"content": chunk})
            elif event == "done":
                # 发送完成信号
                yield format_event("done", {"done": True})
    except Exception as e:
        logger.error(f"SSE流式响应失败: {e}")
        # 发送错误信号
        yield format_event("error", {"error": str(e)})


def sse_response(events: AsyncIterator[StreamEvent]) -> StreamingResponse:
    """
    将流式事件转换为SSE响应

    Returns:
        StreamingResponse对象
    """
    return StreamingResponse(
        event_stream(events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # 禁用nginx缓冲
        }
    )
