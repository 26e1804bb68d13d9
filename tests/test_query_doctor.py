"""Tests for the slow-query doctor: LLM calls mocked, no network."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from langchain_anthropic import ChatAnthropic
from langchain_openai import ChatOpenAI

from warroom.diagnosis.llm import create_llm
from warroom.diagnosis.query_doctor import FALLBACK_DIAGNOSIS, analyze_slow_query, parse_diagnosis

GOOD_ANSWER = (
    '{"problem": "Sequential scan on orders", "solution": "Index customer_id", '
    '"sqlCommand": "CREATE INDEX CONCURRENTLY idx_orders_customer ON orders(customer_id);", '
    '"estimatedImprovement": "95%"}'
)


def _llm_returning(content: str) -> MagicMock:
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=MagicMock(content=content))
    return llm


class TestParseDiagnosis:
    def test_plain_json(self) -> None:
        diagnosis = parse_diagnosis(GOOD_ANSWER)
        assert diagnosis is not None
        assert diagnosis.estimated_improvement == "95%"

    def test_fenced_json(self) -> None:
        diagnosis = parse_diagnosis(f"```json\n{GOOD_ANSWER}\n```")
        assert diagnosis is not None
        assert diagnosis.problem == "Sequential scan on orders"

    def test_garbage(self) -> None:
        assert parse_diagnosis("I think you should add an index.") is None

    def test_missing_fields(self) -> None:
        assert parse_diagnosis('{"problem": "x"}') is None


class TestAnalyzeSlowQuery:
    @pytest.mark.asyncio
    async def test_missing_key(self, mock_settings: Any) -> None:
        diagnosis = await analyze_slow_query("SELECT * FROM users WHERE email = 'a'")
        assert diagnosis.problem == "Missing API Key"
        assert diagnosis.sql_command == "-- No Action"
        assert diagnosis.estimated_improvement == "0%"

    @pytest.mark.asyncio
    async def test_model_answer(self, mock_settings: Any) -> None:
        mock_settings.openai_api_key = "sk-test"
        llm = _llm_returning(GOOD_ANSWER)
        with patch("warroom.diagnosis.query_doctor.create_llm", return_value=llm) as factory:
            diagnosis = await analyze_slow_query("SELECT * FROM orders WHERE customer_id = 7", "orders(id, customer_id)")

        assert diagnosis.sql_command.startswith("CREATE INDEX CONCURRENTLY")
        assert factory.call_args.kwargs["temperature"] == 0.1
        messages = llm.ainvoke.call_args.args[0]
        assert "orders(id, customer_id)" in messages[1].content
        assert "SLOW QUERY: SELECT * FROM orders" in messages[1].content

    @pytest.mark.asyncio
    async def test_call_failure_falls_back(self, mock_settings: Any) -> None:
        mock_settings.openai_api_key = "sk-test"
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("rate limited"))
        with patch("warroom.diagnosis.query_doctor.create_llm", return_value=llm):
            diagnosis = await analyze_slow_query("SELECT 1")
        assert diagnosis == FALLBACK_DIAGNOSIS

    @pytest.mark.asyncio
    async def test_unparseable_falls_back(self, mock_settings: Any) -> None:
        mock_settings.llm_provider = "anthropic"
        mock_settings.anthropic_api_key = "sk-ant-test"
        with patch("warroom.diagnosis.query_doctor.create_llm", return_value=_llm_returning("no json here")):
            diagnosis = await analyze_slow_query("SELECT 1")
        assert diagnosis.problem == "Full Table Scan detected on 'users' table."

    def test_wire_shape_is_camel_case(self) -> None:
        dumped = FALLBACK_DIAGNOSIS.model_dump()
        assert set(dumped) == {"problem", "solution", "sqlCommand", "estimatedImprovement"}


class TestCreateLlm:
    def test_openai(self, mock_settings: Any) -> None:
        mock_settings.openai_api_key = "sk-test"
        mock_settings.openai_base_url = "https://api.perplexity.test"
        llm = create_llm(mock_settings, temperature=0.1)
        assert isinstance(llm, ChatOpenAI)
        assert llm.model_name == "gpt-4o-mini"
        assert llm.openai_api_base == "https://api.perplexity.test"

    def test_anthropic(self, mock_settings: Any) -> None:
        mock_settings.llm_provider = "anthropic"
        mock_settings.anthropic_api_key = "sk-ant-test"
        llm = create_llm(mock_settings, model_override="claude-haiku-4-5")
        assert isinstance(llm, ChatAnthropic)
        assert llm.model == "claude-haiku-4-5"
