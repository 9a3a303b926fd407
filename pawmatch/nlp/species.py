"""
物种识别：关键词优先，模型分类兜底
"""
import re
from typing import Optional

from pawmatch.core.types import Species

# 英文按词边界匹配，中文按子串匹配
_CAT_WORDS = re.compile(r"\b(cats?|kittens?|kitty|kitties|felines?)\b", re.IGNORECASE)
_DOG_WORDS = re.compile(r"\b(dogs?|doggy|doggies|pupp(?:y|ies)|pups?|canines?)\b", re.IGNORECASE)
_CAT_CHARS = ("猫", "喵")
_DOG_CHARS = ("狗", "犬")


def detect_species_by_keyword(text: Optional[str]) -> Optional[Species]:
    """
    关键词识别物种（猫优先）

    Returns:
        Species；没有命中时返回 None
    """
    if not text:
        return None
    if _CAT_WORDS.search(text) or any(ch in text for ch in _CAT_CHARS):
        return Species.CAT
    if _DOG_WORDS.search(text) or any(ch in text for ch in _DOG_CHARS):
        return Species.DOG
    return None


def parse_species_token(answer: Optional[str]) -> Optional[Species]:
    """解析模型的单词分类结果：只接受 CAT / DOG，其余（包括 NONE）视为不过滤"""
    token = (answer or "").strip().strip(".\"'`").upper()
    if token == Species.CAT.value:
        return Species.CAT
    if token == Species.DOG.value:
        return Species.DOG
    return None


def parse_species(value: Optional[str]) -> Species:
    """
    解析调用方提供的物种（严格）

    Raises:
        ValueError: 不是 CAT / DOG
    """
    token = (value or "").strip().upper()
    try:
        return Species(token)
    except ValueError:
        raise ValueError(f"Species must be CAT or DOG, got {value!r}") from None
