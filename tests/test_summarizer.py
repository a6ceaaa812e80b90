"""Tests for the summarizer, its prompt templates and the LLM client wrapper."""

import json
from unittest.mock import Mock, patch

import pytest

from pipeline.exceptions import SummarizerOutputError
from summarizer.llm_client import LLMClient
from summarizer.prompt_template import ISSUE_BODY_LIMIT, build_issue_analysis_prompt, build_repo_summary_prompt
from summarizer.summarizer import Summarizer, parse_json_object, validate_issue_analysis


def analysis_json(**overrides):
    data = {"intro": "Fix a typo in the docs.", "difficulty": 1, "firstSteps": "Open README.md and fix it."}
    data.update(overrides)
    return json.dumps(data)


@pytest.fixture
def llm():
    return Mock()


@pytest.fixture
def summarizer(llm):
    return Summarizer(llm, max_retries=2, retry_delay=2.0, sleep=Mock())


class TestPrompts:
    """Tests for prompt construction."""

    def test_repo_prompt_lists_languages(self):
        prompt = build_repo_summary_prompt("facebook", "react", ["JavaScript", "TypeScript"])
        assert "Repository: facebook/react" in prompt
        assert "Primary Languages: JavaScript, TypeScript" in prompt

    def test_repo_prompt_unknown_languages(self):
        assert "Primary Languages: Unknown" in build_repo_summary_prompt("a", "b", [])

    def test_issue_prompt_truncates_long_body(self):
        prompt = build_issue_analysis_prompt("a", "b", "Title", "x" * 5000)
        assert "x" * ISSUE_BODY_LIMIT + " ..." in prompt
        assert "x" * (ISSUE_BODY_LIMIT + 1) not in prompt

    def test_issue_prompt_without_body(self):
        prompt = build_issue_analysis_prompt("a", "b", "Title", None)
        assert "No description provided." in prompt
        assert '"firstSteps"' in prompt


class TestParsing:
    """Tests for reply parsing and validation."""

    def test_parse_plain_json(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_parse_fenced_json(self):
        assert parse_json_object('Here you go:\n```json\n{"a": 1}\n```') == {"a": 1}

    def test_parse_without_object_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_json_object("no json here")

    def test_difficulty_is_clamped(self):
        assert validate_issue_analysis(json.loads(analysis_json(difficulty=9))).difficulty == 5
        assert validate_issue_analysis(json.loads(analysis_json(difficulty="2.7"))).difficulty == 2

    def test_missing_fields_rejected(self):
        with pytest.raises(ValueError) as exc_info:
            validate_issue_analysis({"intro": "x"})
        assert "difficulty" in str(exc_info.value)
        assert "firstSteps" in str(exc_info.value)

    def test_non_numeric_difficulty_rejected(self):
        with pytest.raises(ValueError):
            validate_issue_analysis(json.loads(analysis_json(difficulty="easy")))


class TestSummarizer:
    """Tests for Summarizer."""

    def test_summarize_repo(self, summarizer, llm):
        llm.send_prompt.return_value = "  React is a UI library.  "

        result = summarizer.summarize_repo("facebook", "react", ["JavaScript"])

        assert result.summary == "React is a UI library."
        assert "facebook/react" in llm.send_prompt.call_args[0][0]

    def test_empty_summary_raises(self, summarizer, llm):
        llm.send_prompt.return_value = "   "
        with pytest.raises(SummarizerOutputError):
            summarizer.summarize_repo("a", "b", [])

    def test_analyze_issue(self, summarizer, llm):
        llm.send_prompt.return_value = analysis_json(difficulty=3)

        result = summarizer.analyze_issue("a", "b", "Fix typo", "There is a typo")

        assert result.intro == "Fix a typo in the docs."
        assert result.difficulty == 3
        assert result.first_steps == "Open README.md and fix it."
        assert llm.send_prompt.call_count == 1

    def test_malformed_json_is_sent_back_for_repair(self, summarizer, llm):
        llm.send_prompt.side_effect = ['{"intro": "x", difficulty: }', analysis_json()]

        result = summarizer.analyze_issue("a", "b", "Fix typo", None)

        assert result.difficulty == 1
        repair_prompt = llm.send_prompt.call_args_list[1][0][0]
        assert "malformed" in repair_prompt

    def test_invalid_fields_retry_original_prompt(self, summarizer, llm):
        llm.send_prompt.side_effect = [json.dumps({"intro": "x"}), analysis_json()]

        result = summarizer.analyze_issue("a", "b", "Fix typo", None)

        assert result.intro == "Fix a typo in the docs."
        first_prompt = llm.send_prompt.call_args_list[0][0][0]
        assert llm.send_prompt.call_args_list[1][0][0] == first_prompt
        summarizer.sleep.assert_called_once_with(2.0)

    def test_gives_up_after_retries(self, summarizer, llm):
        llm.send_prompt.return_value = json.dumps({"intro": "x"})

        with pytest.raises(SummarizerOutputError):
            summarizer.analyze_issue("a", "b", "Fix typo", None)

        assert llm.send_prompt.call_count == 3


class TestLLMClient:
    """Tests for LLMClient."""

    def test_rejects_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClient(provider="cohere", model="m", api_key="k")

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            LLMClient(provider="openai", model="gpt-4o-mini", api_key="")

    def test_anthropic_uses_compatible_endpoint(self):
        with patch("summarizer.llm_client.OpenAI") as mock_openai:
            LLMClient(provider="anthropic", model="claude-3-5-haiku-20241022", api_key="sk-ant")
        mock_openai.assert_called_once_with(api_key="sk-ant", base_url="https://api.anthropic.com/v1")

    def test_send_prompt_returns_content(self):
        with patch("summarizer.llm_client.OpenAI") as mock_openai:
            client = LLMClient(provider="openai", model="gpt-4o-mini", api_key="sk-oai")
        response = Mock()
        response.choices = [Mock(message=Mock(content="hello"))]
        mock_openai.return_value.chat.completions.create.return_value = response

        assert client.send_prompt("hi", system="be brief") == "hello"
        messages = mock_openai.return_value.chat.completions.create.call_args[1]["messages"]
        assert messages[0] == {"role": "system", "content": "be brief"}
        assert messages[1] == {"role": "user", "content": "hi"}
