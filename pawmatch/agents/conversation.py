"""
对话/问答文本化
"""
from typing import Iterable, Optional

from pawmatch.core.types import Message, QuestionAnswer

NO_CONVERSATION = "No conversation yet."
NO_ANSWERS = "No answers provided."


def normalize_text(value: Optional[str]) -> Optional[str]:
    """去首尾空白，空串视为None"""
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def format_messages(messages: Optional[Iterable[Optional[Message]]]) -> str:
    """对话 -> `user: ...` / `assistant: ...` 行；没有有效消息时返回占位文本"""
    lines = []
    for message in messages or []:
        if message is None:
            continue
        content = normalize_text(message.content)
        if content is None:
            continue
        role = (normalize_text(message.role) or "").lower()
        label = "user" if role == "user" else "assistant"
        lines.append(f"{label}: {content}")
    return "\n".join(lines) if lines else NO_CONVERSATION


def format_question_answers(question_answers: Optional[Iterable[Optional[QuestionAnswer]]]) -> str:
    """问答列表 -> `Q: ...\\nA: ...`；问题或回答为空的条目跳过"""
    lines = []
    for qa in question_answers or []:
        if qa is None:
            continue
        question = normalize_text(qa.question)
        answer = normalize_text(qa.answer)
        if question is None or answer is None:
            continue
        lines.append(f"Q: {question}\nA: {answer}")
    return "\n".join(lines) if lines else NO_ANSWERS


def count_answers(messages: Optional[Iterable[Optional[Message]]]) -> int:
    """历史中用户的有效回答条数"""
    return sum(
        1 for message in messages or []
        if message is not None
        and (normalize_text(message.role) or "").lower() == "user"
        and normalize_text(message.content) is not None
    )
