"""
统一异常体系

- NotFoundError：引用的用户/宠物不存在（终止，原样返回）
- ValidationError：调用方输入不满足领域约束（在任何外部调用之前抛出）
- UpstreamError：Embedding/LLM/检索等上游失败（网关类错误，不自动重试）
模型输出格式错误不属于异常：由 ResponseNormalizer 在内部消化。
"""
from typing import Optional


class AgentError(Exception):
    """所有业务异常的基类"""
    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class NotFoundError(AgentError):
    """实体不存在"""
    pass


class ValidationError(AgentError):
    """输入校验失败"""
    pass


class UpstreamError(AgentError):
    """上游服务不可用"""
    pass


class LLMError(UpstreamError):
    """LLM调用失败异常"""
    pass


class EmbeddingError(UpstreamError):
    """Embedding调用失败或返回了非法向量"""
    pass


class RetrievalError(UpstreamError):
    """检索/存储失败异常"""
    pass


class PromptError(AgentError):
    """Prompt模板错误异常"""
    pass


class VectorFormatError(ValueError):
    """向量文本格式损坏"""
    pass
