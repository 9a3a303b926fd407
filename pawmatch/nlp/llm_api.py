"""
LLM API（对话补全 + 流式）- 使用 OpenAI SDK

不做自动重试：调用失败直接以 LLMError 上抛，由调用方决定如何呈现。
"""
import asyncio
from typing import AsyncIterator, Dict, Any, List, Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from pawmatch.core.config import agent_settings
from pawmatch.logs import setup_logger, log_metric
from pawmatch.nlp.exceptions import LLMError

logger = setup_logger(__name__)


class LLMAPI:
    """LLM API客户端（对话补全 / 流式）"""

    def __init__(self):
        self.api_key = agent_settings.LLM_API_KEY
        self.base_url = agent_settings.LLM_BASE_URL
        self.model = agent_settings.LLM_MODEL
        self.temperature = agent_settings.LLM_TEMPERATURE
        self.max_tokens = agent_settings.LLM_MAX_TOKENS
        self.timeout = agent_settings.LLM_TIMEOUT

        # 预编译请求参数模板：新模型使用 max_completion_tokens 且只支持默认 temperature
        model_lower = self.model.lower()
        self._use_max_completion_tokens = (
            "gpt-5" in model_lower or
            "gpt-4o" in model_lower or
            model_lower.startswith("o1") or
            model_lower.startswith("o3")
        )
        self._use_default_temp = (
            "gpt-5" in model_lower or
            model_lower.startswith("o1") or
            model_lower.startswith("o3")
        )

        # httpx.AsyncClient 需要在事件循环中创建，所以延迟初始化
        self._http_client: Optional[httpx.AsyncClient] = None
        self._http_client_lock: Optional[asyncio.Lock] = None
        self.async_client: Optional[AsyncOpenAI] = None

        if not self.api_key:
            logger.warning("LLM_API_KEY未设置，LLM功能将不可用")

    async def _ensure_async_client(self):
        """确保 async_client 已初始化（延迟初始化）"""
        if self._http_client_lock is None:
            self._http_client_lock = asyncio.Lock()

        if self.async_client is None and self.api_key:
            async with self._http_client_lock:
                # 双重检查，避免重复创建
                if self.async_client is None:
                    limits = httpx.Limits(max_keepalive_connections=100, max_connections=100)
                    timeout = httpx.Timeout(self.timeout * 2, connect=10.0)
                    self._http_client = httpx.AsyncClient(limits=limits, timeout=timeout)
                    self.async_client = AsyncOpenAI(
                        api_key=self.api_key,
                        base_url=self.base_url,
                        http_client=self._http_client,
                        timeout=self.timeout,
                        max_retries=0
                    )

    def _build_request_params(self, messages: List[Dict[str, str]], stream: bool) -> Dict[str, Any]:
        """构建请求参数"""
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": stream,
        }

        if self._use_max_completion_tokens:
            params["max_completion_tokens"] = self.max_tokens
        else:
            params["max_tokens"] = self.max_tokens

        if not self._use_default_temp:
            params["temperature"] = self.temperature

        return params

    async def _require_client(self) -> AsyncOpenAI:
        await self._ensure_async_client()
        if not self.async_client:
            raise LLMError("LLM API密钥未配置")
        return self.async_client

    @log_metric("llm_requests")
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        单轮对话补全（非流式）

        Args:
            system_prompt: 系统指令
            user_prompt: 用户输入

        Returns:
            模型输出文本（去首尾空白）

        Raises:
            LLMError: 调用失败或响应中没有内容
        """
        client = await self._require_client()
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        request_params = self._build_request_params(messages, stream=False)

        try:
            response = await client.chat.completions.create(**request_params)
        except (OpenAIError, httpx.HTTPError) as e:
            logger.error(f"LLM API调用失败: {e}")
            raise LLMError(f"LLM API调用失败: {e}", cause=e) from e

        if not response.choices:
            raise LLMError("LLM响应中没有choices")
        message = response.choices[0].message
        content = message.content if message else None
        if content is None:
            finish_reason = getattr(response.choices[0], "finish_reason", None)
            raise LLMError(f"LLM响应中没有内容 (finish_reason={finish_reason})")
        return content.strip()

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """
        流式生成

        Args:
            prompt: 用户输入

        Yields:
            增量文本内容（跳过空增量）

        Raises:
            LLMError: 调用失败
        """
        client = await self._require_client()
        messages = [{"role": "user", "content": prompt}]
        request_params = self._build_request_params(messages, stream=True)

        try:
            stream_obj = await client.chat.completions.create(**request_params)
        except (OpenAIError, httpx.HTTPError) as e:
            logger.error(f"LLM流式调用失败: {e}")
            raise LLMError(f"LLM流式调用失败: {e}", cause=e) from e

        try:
            async for chunk in stream_obj:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta and delta.content:
                    yield delta.content
        except (OpenAIError, httpx.HTTPError) as e:
            logger.error(f"LLM流式响应中断: {e}")
            raise LLMError(f"LLM流式响应中断: {e}", cause=e) from e
        finally:
            await stream_obj.close()

    async def close(self):
        """关闭 HTTP 客户端连接"""
        if self._http_client:
            await self._http_client.aclose()


# 全局LLM API实例
llm_api = LLMAPI()
