"""
渐进式访谈：由完整对话历史推导访谈状态

状态不做存储。每次调用都把完整历史交给模型，再由 derive_state 把
(历史, 模型回复) 映射为 InterviewState，同样的输入永远得到同样的状态。

- fixed：固定 15 个回答，每批 5 个问题
- coverage：4 个维度全部覆盖，每次 1 个问题

只有解析出的 JSON 对象里明确带有 endverification: true 才会进入 COMPLETE；
无法解析的回复一律视为"仍在收集"，把原文拆成自由问题返回。
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pawmatch.agents.conversation import count_answers, format_messages
from pawmatch.config import settings
from pawmatch.core.types import (
    EvaluationOutcome, InterviewState, InterviewStatus, Message,
)
from pawmatch.nlp.exceptions import ValidationError
from pawmatch.nlp.llm_api import LLMAPI, llm_api
from pawmatch.nlp.normalizer import (
    ExtractionRule, UNPARSED, key_rule, apply_rules, fallback_questions, limit_questions,
    read_questions, read_text, strip_code_fences, try_parse_json,
)
from pawmatch.nlp.prompts import PromptManager, prompt_manager
from pawmatch.logs import setup_logger, log_metric

logger = setup_logger(__name__)

INTERVIEW_MODES = ("fixed", "coverage")
COVERAGE_DIMENSIONS: Tuple[str, ...] = ("lifestyle", "living_space", "experience", "expectations")
NO_PROFILE = "No profile summary provided."

PROFILE_RULES: Tuple[ExtractionRule, ...] = (
    key_rule("profile"), key_rule("psychProfile"), key_rule("psychologicalProfile"),
)
QUESTION_LIST_RULES: Tuple[ExtractionRule, ...] = (
    key_rule("nextQuestions"), key_rule("questions"),
)
SINGLE_QUESTION_RULES: Tuple[ExtractionRule, ...] = (
    key_rule("nextQuestion"), key_rule("question"), key_rule("followUp"), key_rule("next"),
)


def read_flag(value: Any) -> bool:
    """读取完成信号：只认 true / "true"，其余一律为 False"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def read_coverage(value: Any) -> Dict[str, bool]:
    """读取各维度覆盖情况（只保留已知维度）"""
    coverage = {dimension: False for dimension in COVERAGE_DIMENSIONS}
    if isinstance(value, dict):
        for dimension in COVERAGE_DIMENSIONS:
            coverage[dimension] = read_flag(value.get(dimension))
    return coverage


def _extract_questions(node: Dict[str, Any]) -> List[str]:
    _, listed = apply_rules(node, QUESTION_LIST_RULES)
    questions = read_questions(listed)
    if not questions:
        _, single = apply_rules(node, SINGLE_QUESTION_RULES)
        questions = read_questions(single)
    return questions


def derive_state(
    messages: Sequence[Optional[Message]],
    reply: Optional[str],
    mode: str = "fixed",
    target: int = None,
    batch_size: int = None
) -> InterviewState:
    """
    由 (历史, 模型回复) 推导访谈状态（纯函数）

    Args:
        messages: 完整对话历史
        reply: 模型原始回复
        mode: fixed 或 coverage
        target: 固定题数模式的目标回答数
        batch_size: 固定题数模式每批问题数

    Returns:
        InterviewState
    """
    if mode == "coverage":
        target = len(COVERAGE_DIMENSIONS)
        question_limit = 1
    else:
        target = target or settings.INTERVIEW_TARGET_ANSWERS
        question_limit = batch_size or settings.INTERVIEW_BATCH_SIZE

    answered = count_answers(messages)
    cleaned = strip_code_fences(reply)
    root = try_parse_json(cleaned)

    state = InterviewState(mode=mode, answered=answered, target=target)
    if mode == "coverage":
        state.coverage = read_coverage(root.get("coverage") if isinstance(root, dict) else None)

    if isinstance(root, dict):
        if read_flag(root.get("endverification")):
            _, profile = apply_rules(root, PROFILE_RULES)
            state.status = InterviewStatus.COMPLETE
            state.profile = read_text(profile) or NO_PROFILE
            return state
        questions = _extract_questions(root) or fallback_questions(cleaned)
    elif isinstance(root, list):
        questions = read_questions(root)
    else:
        if root is UNPARSED:
            logger.info("访谈回复无法解析为JSON，按自由文本处理")
        questions = fallback_questions(cleaned)

    state.next_questions = limit_questions(questions, question_limit)
    return state


class InterviewAgent:
    """访谈Agent：构建prompt、调用模型、推导状态"""

    def __init__(self, llm: LLMAPI = llm_api, prompts: PromptManager = prompt_manager):
        self.llm = llm
        self.prompts = prompts

    def system_prompt(self, mode: str) -> str:
        if mode == "coverage":
            return self.prompts.render(
                "interview_coverage_system",
                dimensions=", ".join(COVERAGE_DIMENSIONS),
            )
        return self.prompts.render(
            "interview_fixed_system",
            target=settings.INTERVIEW_TARGET_ANSWERS,
            batch_size=settings.INTERVIEW_BATCH_SIZE,
        )

    @log_metric("evaluate_requests")
    async def evaluate(self, messages: Sequence[Optional[Message]], mode: Optional[str] = None) -> EvaluationOutcome:
        """
        评估当前访谈进度

        Args:
            messages: 完整对话历史
            mode: fixed / coverage（默认读取配置）

        Returns:
            EvaluationOutcome（状态、发送的prompt、模型原始回复）

        Raises:
            ValidationError: 未知的访谈模式
            LLMError: 模型调用失败
        """
        mode = (mode or settings.INTERVIEW_MODE).strip().lower()
        if mode not in INTERVIEW_MODES:
            raise ValidationError(f"Unknown interview mode: {mode}")

        prompt = self.prompts.render("interview_user", conversation=format_messages(messages))
        raw = await self.llm.complete(self.system_prompt(mode), prompt)
        state = derive_state(messages, raw, mode)
        logger.info(
            f"访谈评估: mode={mode}, answered={state.answered}/{state.target}, "
            f"status={state.status.value}, questions={len(state.next_questions)}"
        )
        return EvaluationOutcome(state=state, prompt=prompt, raw_response=raw or "")


# 全局实例
interview_agent = InterviewAgent()
