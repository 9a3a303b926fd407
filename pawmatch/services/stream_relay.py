"""
流式对话中继

生产者任务把模型流写入有界队列，消费者按顺序读出并转成事件：
- ("delta", 文本)：每个增量一条，顺序与上游一致
- ("done", None)：正常结束时恰好一条（零增量时也有）

超过墙钟上限时取消上游并直接结束（不发 done，也不算错误）。
上游只会被释放一次；释放开始后不再推送任何内容。
"""
import asyncio
from typing import AsyncIterator, Optional, Tuple

from pawmatch.config import settings
from pawmatch.nlp.exceptions import AgentError, LLMError
from pawmatch.logs import setup_logger, metrics

logger = setup_logger(__name__)

StreamEvent = Tuple[str, Optional[str]]

_CHUNK = "chunk"
_END = "end"
_ERROR = "error"


class StreamRelay:
    """单次流式会话"""

    def __init__(
        self,
        source: AsyncIterator[str],
        timeout: Optional[float] = None,
        queue_size: Optional[int] = None
    ):
        self.source = source
        self.timeout = timeout if timeout is not None else settings.STREAM_TIMEOUT
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size or settings.STREAM_QUEUE_MAX_SIZE)
        self.timed_out = False
        self.dispose_count = 0
        self._producer: Optional[asyncio.Task] = None
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def _produce(self):
        """生产者：消费上游流并写入队列"""
        try:
            async for chunk in self.source:
                if self._disposed:
                    break
                await self.queue.put((_CHUNK, chunk))
            if not self._disposed:
                await self.queue.put((_END, None))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"上游流式响应失败: {e}")
            if not self._disposed:
                await self.queue.put((_ERROR, e))
        finally:
            aclose = getattr(self.source, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _next(self, deadline: float) -> Optional[Tuple[str, object]]:
        """读取下一项；超时返回None"""
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            return None
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=remaining)
        except asyncio.TimeoutError:
            return None

    async def events(self) -> AsyncIterator[StreamEvent]:
        """
        产出流式事件

        Yields:
            ("delta", 文本) ... ("done", None)

        Raises:
            LLMError: 上游失败
        """
        metrics.increment("stream_sessions")
        deadline = asyncio.get_running_loop().time() + self.timeout
        self._producer = asyncio.create_task(self._produce())
        try:
            while not self._disposed:
                item = await self._next(deadline)
                if item is None:
                    self.timed_out = True
                    metrics.increment("stream_timeouts")
                    logger.warning(f"流式会话超过 {self.timeout}s，已关闭")
                    return

                kind, payload = item
                if kind == _CHUNK:
                    yield "delta", payload
                elif kind == _END:
                    yield "done", None
                    return
                else:
                    if isinstance(payload, AgentError):
                        raise payload
                    raise LLMError(f"流式响应失败: {payload}", cause=payload) from payload
        finally:
            await self.aclose()

    def dispose(self):
        """释放上游（幂等）"""
        if self._disposed:
            return
        self._disposed = True
        self.dispose_count += 1
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()

    async def aclose(self):
        """释放并等待生产者退出"""
        self.dispose()
        if self._producer is not None:
            await asyncio.gather(self._producer, return_exceptions=True)
