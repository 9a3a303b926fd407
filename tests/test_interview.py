"""
访谈状态机测试
"""
import json

import pytest

from pawmatch.agents.interview_agent import (
    COVERAGE_DIMENSIONS, NO_PROFILE, InterviewAgent, derive_state,
)
from pawmatch.core.types import InterviewStatus, Message
from pawmatch.nlp.exceptions import LLMError, ValidationError
from tests.conftest import FakeLLM


def history(answers: int):
    messages = []
    for i in range(answers):
        messages.append(Message(role="assistant", content=f"Question {i}?"))
        messages.append(Message(role="user", content=f"Answer {i}"))
    return messages


class TestDeriveStateFixed:
    """固定题数模式"""

    def test_explicit_completion(self):
        reply = json.dumps({"endverification": True, "profile": "Calm homebody who works remotely."})
        state = derive_state(history(15), reply, "fixed")
        assert state.status == InterviewStatus.COMPLETE
        assert state.complete
        assert state.profile == "Calm homebody who works remotely."
        assert state.next_questions == []
        assert state.answered == 15
        assert state.target == 15

    def test_completion_flag_as_string(self):
        state = derive_state([], '{"endverification": "true", "psychProfile": "p"}', "fixed")
        assert state.complete
        assert state.profile == "p"

    def test_completion_without_profile(self):
        state = derive_state([], '{"endverification": true}', "fixed")
        assert state.complete
        assert state.profile == NO_PROFILE

    def test_questions_capped_at_batch_size(self):
        reply = json.dumps({"endverification": False, "nextQuestions": [f"Q{i}?" for i in range(8)]})
        state = derive_state(history(2), reply, "fixed")
        assert state.status == InterviewStatus.COLLECTING
        assert state.next_questions == ["Q0?", "Q1?", "Q2?", "Q3?", "Q4?"]
        assert state.answered == 2

    def test_single_question_keys(self):
        state = derive_state([], '{"followUp": "Do you travel often?"}', "fixed")
        assert state.next_questions == ["Do you travel often?"]

    def test_top_level_array_of_questions(self):
        state = derive_state([], '["A?", "B?"]', "fixed")
        assert state.next_questions == ["A?", "B?"]
        assert not state.complete

    def test_fenced_json(self):
        state = derive_state([], '```json\n{"questions": ["Where do you live?"]}\n```', "fixed")
        assert state.next_questions == ["Where do you live?"]

    def test_answered_counts_only_non_blank_user_messages(self):
        messages = [
            Message(role="user", content="yes"),
            Message(role="USER", content="  "),
            Message(role="assistant", content="ok"),
            None,
            Message(role="user", content="no"),
        ]
        assert derive_state(messages, "", "fixed").answered == 2

    @pytest.mark.parametrize("reply", [
        "endverification: true",
        '{"endverification": true',
        "Great! We are done. endverification=true",
        '{"endverification": 1, "profile": "x"}',
        '{"endverification": "yes"}',
        '[{"endverification": true}]',
        "",
        None,
    ])
    def test_malformed_never_completes(self, reply):
        state = derive_state(history(20), reply, "fixed")
        assert state.status == InterviewStatus.COLLECTING
        assert state.profile is None

    def test_deeply_nested_reply_keeps_collecting(self):
        state = derive_state(history(20), "[" * 100000 + "]" * 100000, "fixed")
        assert state.status == InterviewStatus.COLLECTING
        assert state.next_questions == []

    def test_prose_becomes_free_form_questions(self):
        state = derive_state([], "1. Do you have a yard?\n2. How many hours are you away?", "fixed")
        assert state.next_questions == ["Do you have a yard?", "How many hours are you away?"]

    def test_pure_function(self):
        messages = history(3)
        reply = '{"nextQuestions": ["A?"]}'
        assert derive_state(messages, reply, "fixed") == derive_state(messages, reply, "fixed")


class TestDeriveStateCoverage:
    """维度覆盖模式"""

    def test_one_question_and_coverage(self):
        reply = json.dumps({
            "endverification": False,
            "coverage": {"lifestyle": True, "living_space": "true", "experience": False},
            "nextQuestions": ["Have you owned pets?", "What do you expect?"],
        })
        state = derive_state(history(2), reply, "coverage")
        assert state.next_questions == ["Have you owned pets?"]
        assert state.coverage == {
            "lifestyle": True, "living_space": True, "experience": False, "expectations": False,
        }
        assert state.target == len(COVERAGE_DIMENSIONS)

    def test_completion(self):
        reply = json.dumps({
            "endverification": True,
            "coverage": {dimension: True for dimension in COVERAGE_DIMENSIONS},
            "psychologicalProfile": "Active runner with a big yard.",
        })
        state = derive_state(history(4), reply, "coverage")
        assert state.complete
        assert state.profile == "Active runner with a big yard."

    def test_unparseable_reports_nothing_covered(self):
        state = derive_state([], "What is your daily routine?", "coverage")
        assert not state.complete
        assert state.next_questions == ["What is your daily routine?"]
        assert not any(state.coverage.values())


class TestInterviewAgent:
    """访谈Agent"""

    async def test_evaluate_builds_conversation_prompt(self):
        llm = FakeLLM(['{"nextQuestions": ["Do you rent or own?"]}'])
        agent = InterviewAgent(llm=llm)
        messages = [Message(role="assistant", content="Hi!"), Message(role="user", content="I want a cat")]

        outcome = await agent.evaluate(messages, "fixed")

        system_prompt, user_prompt = llm.calls[0]
        assert "assistant: Hi!\nuser: I want a cat" in user_prompt
        assert "15" in system_prompt
        assert outcome.prompt == user_prompt
        assert outcome.raw_response == '{"nextQuestions": ["Do you rent or own?"]}'
        assert outcome.state.next_questions == ["Do you rent or own?"]

    async def test_empty_history_uses_placeholder(self):
        llm = FakeLLM(["{}"])
        outcome = await InterviewAgent(llm=llm).evaluate([], "coverage")
        assert "No conversation yet." in outcome.prompt
        assert outcome.state.mode == "coverage"

    async def test_unknown_mode_rejected_before_model_call(self):
        llm = FakeLLM()
        with pytest.raises(ValidationError):
            await InterviewAgent(llm=llm).evaluate([], "freestyle")
        assert llm.calls == []

    async def test_model_failure_propagates(self):
        agent = InterviewAgent(llm=FakeLLM(error=LLMError("down")))
        with pytest.raises(LLMError):
            await agent.evaluate(history(1), "fixed")
