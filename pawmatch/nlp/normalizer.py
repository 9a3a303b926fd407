"""
LLM输出规范化（ResponseNormalizer）

模型输出是不可信的自由文本。本模块负责：
1. 去除 markdown 代码块围栏
2. 容错 JSON 解析（失败不抛异常）
3. 按有序的命名提取规则兼容多种 JSON 形状
4. 领域校验：丢弃候选集之外的 id，置信度百分比换算并截断到 [0,1]
5. 稳定去重 + 按候选原始顺序补齐（置信度 0.5）
6. 非 JSON 文本按行拆分为自由问题（仅访谈使用）

所有公开函数都是全函数：对任意输入都返回合法、有界的结构，从不抛出异常。
"""
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from pawmatch.core.types import RecommendationItem, RerankDecision
from pawmatch.logs import setup_logger, metrics

logger = setup_logger(__name__)

DEFAULT_CONFIDENCE = 0.5
MAX_HIGHLIGHTS = 3

_FENCE = "```"
_LIST_MARKER = re.compile(r"^(\d+\.|[-*])\s*")


class _Unparsed:
    """解析失败的哨兵值（区别于合法的 JSON null）"""
    def __repr__(self) -> str:
        return "UNPARSED"


UNPARSED = _Unparsed()


@dataclass(frozen=True)
class ExtractionRule:
    """命名提取规则：返回 None 表示该规则不适用"""
    name: str
    extract: Callable[[Any], Any]


def key_rule(name: str) -> ExtractionRule:
    """取对象中的某个键（值为 null 视为不存在）"""
    def extract(node: Any) -> Any:
        if isinstance(node, dict):
            return node.get(name)
        return None
    return ExtractionRule(f"key:{name}", extract)


def list_rule(name: str) -> ExtractionRule:
    """取对象中某个键的数组值"""
    def extract(node: Any) -> Any:
        if isinstance(node, dict) and isinstance(node.get(name), list):
            return node[name]
        return None
    return ExtractionRule(f"list:{name}", extract)


def apply_rules(node: Any, rules: Sequence[ExtractionRule]) -> Tuple[Optional[str], Any]:
    """
    依次尝试提取规则，返回第一个命中的规则名和值

    Returns:
        (规则名, 值)；全部未命中时为 (None, None)
    """
    for rule in rules:
        value = rule.extract(node)
        if value is not None:
            return rule.name, value
    return None, None


# 多条推荐：数组的位置
ITEM_LIST_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule("top_level_array", lambda node: node if isinstance(node, list) else None),
    list_rule("items"),
    list_rule("ids"),
    list_rule("recommendations"),
)

# 数组元素中的 id / confidence
ITEM_ID_RULES: Tuple[ExtractionRule, ...] = (key_rule("id"), key_rule("petId"), key_rule("pet_id"))
ITEM_CONFIDENCE_RULES: Tuple[ExtractionRule, ...] = (key_rule("confidence"), key_rule("score"))

# 单宠物重排：根对象的位置
DECISION_ROOT_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule("object", lambda node: node if isinstance(node, dict) else None),
    ExtractionRule(
        "first_object_in_array",
        lambda node: node[0] if isinstance(node, list) and node and isinstance(node[0], dict) else None,
    ),
)

# 单宠物重排：各字段的候选键名
BEST_ID_RULES: Tuple[ExtractionRule, ...] = (
    key_rule("bestPetId"), key_rule("best_pet_id"), key_rule("petId"), key_rule("id"),
)
EXPLANATION_RULES: Tuple[ExtractionRule, ...] = (
    key_rule("explanation"), key_rule("reason"), key_rule("reasoning"),
)
CONFIDENCE_RULES: Tuple[ExtractionRule, ...] = (key_rule("confidence"), key_rule("score"))
HIGHLIGHT_RULES: Tuple[ExtractionRule, ...] = (
    key_rule("highlights"), key_rule("reasons"),
)


# =====================================================
# 第1、2步：去围栏 + 容错解析
# =====================================================

def strip_code_fences(text: Optional[str]) -> str:
    """
    去除 markdown 代码块围栏（幂等）

    以 ``` 开头时丢弃第一行，若结尾是 ``` 一并去掉；无围栏原样返回（去首尾空白）。
    """
    trimmed = (text or "").strip()
    if trimmed.startswith(_FENCE):
        newline = trimmed.find("\n")
        if newline > -1:
            trimmed = trimmed[newline + 1:]
        if trimmed.endswith(_FENCE):
            trimmed = trimmed[:-len(_FENCE)]
    return trimmed.strip()


def try_parse_json(text: Optional[str]) -> Any:
    """
    尝试解析 JSON

    Returns:
        解析结果；失败时返回 UNPARSED
    """
    if not text:
        return UNPARSED
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return UNPARSED


def parse_json_object_or_raw(text: Optional[str]) -> dict:
    """解析为 JSON 对象；失败（或不是对象）时返回 {"raw": 清洗后的文本}"""
    cleaned = strip_code_fences(text)
    root = try_parse_json(cleaned)
    if isinstance(root, dict):
        return root
    metrics.increment("normalizer_fallbacks")
    return {"raw": cleaned}


# =====================================================
# 第4步：领域校验
# =====================================================

def read_text(value: Any) -> Optional[str]:
    """读取文本值：字符串去空白后为空视为缺失；非字符串序列化为 JSON 文本"""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    try:
        return json.dumps(value, ensure_ascii=False)
    except RecursionError:
        return None


def read_confidence(value: Any) -> Optional[float]:
    """读取置信度：数字或数字字符串，其余视为缺失"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        # 超出 float 范围的整数按无穷大处理，随后截断
        try:
            number = float(value)
        except OverflowError:
            number = math.inf if value > 0 else -math.inf
    elif isinstance(value, float):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def normalize_confidence(value: Optional[float]) -> float:
    """
    置信度规范化

    缺失为 0.5；(1, 100] 视为百分比除以 100；最后截断到 [0, 1]。
    """
    if value is None:
        return DEFAULT_CONFIDENCE
    normalized = float(value)
    if 1 < normalized <= 100:
        normalized = normalized / 100.0
    return min(1.0, max(0.0, normalized))


def coerce_id(value: Any) -> Optional[str]:
    """把模型给出的 id（字符串或数字）转换为字符串 id"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


# =====================================================
# 第3、5步：多条推荐
# =====================================================

def extract_items(root: Any) -> List[Tuple[str, Optional[float]]]:
    """从解析后的 JSON 中按规则提取 (id, 原始置信度) 列表（保持模型顺序）"""
    rule_name, elements = apply_rules(root, ITEM_LIST_RULES)
    if elements is None:
        return []
    logger.debug(f"推荐列表命中提取规则: {rule_name}")

    items: List[Tuple[str, Optional[float]]] = []
    for element in elements:
        if isinstance(element, dict):
            _, raw_id = apply_rules(element, ITEM_ID_RULES)
            _, raw_confidence = apply_rules(element, ITEM_CONFIDENCE_RULES)
            item_id = coerce_id(raw_id)
            if item_id is not None:
                items.append((item_id, read_confidence(raw_confidence)))
        else:
            item_id = coerce_id(element)
            if item_id is not None:
                items.append((item_id, None))
    return items


def normalize_items(
    items: Iterable[Tuple[str, Optional[float]]],
    candidate_ids: Sequence[str],
    target: int = 3
) -> List[RecommendationItem]:
    """
    校验、去重并补齐推荐列表

    Args:
        items: 模型给出的 (id, 置信度)，按模型顺序
        candidate_ids: 提供给模型的候选 id（原始顺序）
        target: 目标数量

    Returns:
        长度为 min(target, 候选数) 的推荐列表
    """
    allowed = list(dict.fromkeys(cid for cid in candidate_ids if cid))
    limit = min(target, len(allowed))
    allowed_set = set(allowed)

    result: List[RecommendationItem] = []
    seen = set()
    for item_id, confidence in items:
        if len(result) >= limit:
            break
        if item_id in allowed_set and item_id not in seen:
            seen.add(item_id)
            result.append(RecommendationItem(id=item_id, confidence=normalize_confidence(confidence)))

    for item_id in allowed:
        if len(result) >= limit:
            break
        if item_id not in seen:
            seen.add(item_id)
            result.append(RecommendationItem(id=item_id, confidence=DEFAULT_CONFIDENCE))
    return result


def parse_recommendation_items(
    raw_text: Optional[str],
    candidate_ids: Sequence[str],
    target: int = 3
) -> List[RecommendationItem]:
    """
    解析多条推荐输出（全函数）

    解析失败时直接进入补齐，保证返回 min(target, 候选数) 条。
    """
    cleaned = strip_code_fences(raw_text)
    root = try_parse_json(cleaned)
    if root is UNPARSED:
        metrics.increment("normalizer_fallbacks")
        logger.info("推荐输出无法解析为JSON，按候选顺序补齐")
        items = []
    else:
        items = extract_items(root)
    return normalize_items(items, candidate_ids, target)


# =====================================================
# 第3、5步：单宠物重排
# =====================================================

def read_highlights(value: Any) -> List[str]:
    """读取亮点列表：数组取前3条非空文本；单个字符串视为一条"""
    if isinstance(value, list):
        values = value
    elif isinstance(value, str):
        values = [value]
    else:
        return []
    highlights = []
    for element in values:
        text = read_text(element)
        if text:
            highlights.append(text)
        if len(highlights) >= MAX_HIGHLIGHTS:
            break
    return highlights


def fallback_decision(raw_text: Optional[str], candidate_ids: Sequence[str]) -> RerankDecision:
    """兜底决策：第一个候选、原文作为解释、置信度 0.5、无亮点"""
    return RerankDecision(
        best_pet_id=candidate_ids[0] if candidate_ids else None,
        explanation=(raw_text or "").strip(),
        confidence=DEFAULT_CONFIDENCE,
        highlights=[],
        fallback=True,
    )


def parse_rerank_decision(raw_text: Optional[str], candidate_ids: Sequence[str]) -> RerankDecision:
    """
    解析单宠物重排输出（全函数）

    Args:
        raw_text: 模型原始输出
        candidate_ids: 提供给模型的候选 id（原始顺序）

    Returns:
        RerankDecision；best_pet_id 必定来自候选集（候选集为空时为 None）
    """
    cleaned = strip_code_fences(raw_text)
    root = try_parse_json(cleaned)
    _, node = apply_rules(root, DECISION_ROOT_RULES) if root is not UNPARSED else (None, None)
    if node is None:
        metrics.increment("normalizer_fallbacks")
        logger.info("重排输出无法解析为JSON对象，使用兜底决策")
        return fallback_decision(raw_text, candidate_ids)

    _, raw_id = apply_rules(node, BEST_ID_RULES)
    _, raw_explanation = apply_rules(node, EXPLANATION_RULES)
    _, raw_confidence = apply_rules(node, CONFIDENCE_RULES)
    _, raw_highlights = apply_rules(node, HIGHLIGHT_RULES)

    best_id = coerce_id(raw_id)
    if best_id not in candidate_ids:
        if best_id is not None:
            logger.warning(f"模型选择的宠物 {best_id} 不在候选集中，已丢弃")
        best_id = candidate_ids[0] if candidate_ids else None

    return RerankDecision(
        best_pet_id=best_id,
        explanation=read_text(raw_explanation) or (raw_text or "").strip(),
        confidence=normalize_confidence(read_confidence(raw_confidence)),
        highlights=read_highlights(raw_highlights),
    )


# =====================================================
# 第6步：自由文本兜底（访谈问题）
# =====================================================

def fallback_questions(cleaned: Optional[str]) -> List[str]:
    """
    把非 JSON 文本拆成问题列表

    看起来像 JSON（以 { 或 [ 开头）的文本不做拆分，返回空列表。
    每个非空行为一个问题，去掉行首的序号/项目符号；没有行剩下时整段作为一个问题。
    """
    normalized = (cleaned or "").strip()
    if not normalized:
        return []
    if normalized.startswith("{") or normalized.startswith("["):
        return []
    questions = []
    for line in normalized.splitlines():
        text = line.strip()
        if not text:
            continue
        text = _LIST_MARKER.sub("", text, count=1).strip()
        if text:
            questions.append(text)
    if not questions:
        questions.append(normalized)
    return questions


def read_questions(value: Any) -> List[str]:
    """读取问题：数组逐项读取文本，单值视为一个问题"""
    if value is None:
        return []
    values = value if isinstance(value, list) else [value]
    questions = []
    for element in values:
        text = read_text(element)
        if text:
            questions.append(text)
    return questions


def limit_questions(questions: Iterable[str], limit: int) -> List[str]:
    """去空白并截断到 limit 条"""
    cleaned = [q.strip() for q in questions if q and q.strip()]
    return cleaned[:max(0, limit)]
