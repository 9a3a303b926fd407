"""
向量文本编解码（pgvector 文本格式）

写入：`[v1,v2,...]`，空向量写为 None（表示"尚无偏好"，区别于零向量），
缺失分量写为 0。
读取：严格解析，任何无法解析的分量直接抛错，不做静默补零。
"""
from typing import List, Optional, Sequence

from pawmatch.nlp.exceptions import VectorFormatError


def encode(vector: Optional[Sequence[Optional[float]]]) -> Optional[str]:
    """
    将向量编码为 pgvector 文本
    
    Args:
        vector: 浮点序列（允许包含None分量）
    
    Returns:
        `[...]` 字符串；空向量返回 None
    """
    if vector is None or len(vector) == 0:
        return None
    parts = []
    for value in vector:
        if value is None:
            parts.append("0")
        else:
            parts.append(repr(float(value)))
    return f"[{','.join(parts)}]"


def decode(text: Optional[str]) -> List[float]:
    """
    将 pgvector 文本解码为向量
    
    Args:
        text: `[...]` 字符串
    
    Returns:
        浮点列表；空输入返回空列表
    
    Raises:
        VectorFormatError: 分量无法解析
    """
    if text is None or not text.strip():
        return []
    trimmed = text.strip()
    if trimmed.startswith("["):
        trimmed = trimmed[1:]
    if trimmed.endswith("]"):
        trimmed = trimmed[:-1]
    if not trimmed.strip():
        return []
    
    values: List[float] = []
    for part in trimmed.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            values.append(float(token))
        except ValueError as e:
            raise VectorFormatError(f"无法解析向量分量: {token!r}") from e
    return values


def check_dimension(vector: Sequence[float], dim: int) -> None:
    """非空向量的维度必须等于固定维度"""
    if vector and len(vector) != dim:
        raise VectorFormatError(f"向量维度不匹配: 期望 {dim}，实际 {len(vector)}")
