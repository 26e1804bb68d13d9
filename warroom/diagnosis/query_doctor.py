"""Query doctor: asks the configured LLM to diagnose a slow SQL query.

Never raises. A missing API key yields a "Missing API Key" diagnosis; a
failed call or an unparseable answer yields a canned full-table-scan
diagnosis so the widget always has something to render.
"""

import json
import logging
import re

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from warroom.config import Settings, get_settings, is_ai_configured
from warroom.diagnosis.llm import create_llm

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "Unknown Schema"

_SYSTEM_PROMPT = """\
You are an expert PostgreSQL DBA. Analyze the SLOW QUERY provided below given the DB SCHEMA.
Identify the performance bottleneck (e.g. Sequential Scan, Missing Index, High Contention).
Propose a concrete SQL solution (e.g. CREATE INDEX).
Return a JSON object with:
- problem: Short description of the issue.
- solution: Short description of the fix.
- sqlCommand: The exact SQL to run (e.g. CREATE INDEX ... CONCURRENTLY).
- estimatedImprovement: Percentage string (e.g. "95%").

JSON only. No markdown."""


class QueryDiagnosis(BaseModel):
    """Diagnosis of one slow query. Serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    problem: str
    solution: str
    sql_command: str = Field(alias="sqlCommand")
    estimated_improvement: str = Field(alias="estimatedImprovement")


def _missing_key_diagnosis(settings: Settings) -> QueryDiagnosis:
    provider = "Anthropic" if settings.llm_provider == "anthropic" else "OpenAI"
    return QueryDiagnosis(
        problem="Missing API Key",
        solution=f"Configure {provider} API Key in .env",
        sql_command="-- No Action",
        estimated_improvement="0%",
    )


FALLBACK_DIAGNOSIS = QueryDiagnosis(
    problem="Full Table Scan detected on 'users' table.",
    solution="Add missing index on 'email' column.",
    sql_command="CREATE INDEX CONCURRENTLY idx_users_email ON users(email);",
    estimated_improvement="99%",
)


def parse_diagnosis(raw_text: str) -> QueryDiagnosis | None:
    """Parse the model's JSON answer, tolerating markdown code fences."""
    stripped = re.sub(r"^```(?:json)?\s*\n?", "", raw_text.strip())
    stripped = re.sub(r"\n?```\s*$", "", stripped).strip()
    try:
        return QueryDiagnosis.model_validate(json.loads(stripped))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.warning("Failed to parse query diagnosis: %s", exc)
        return None


async def analyze_slow_query(
    query: str,
    schema: str = DEFAULT_SCHEMA,
    settings: Settings | None = None,
) -> QueryDiagnosis:
    """Diagnose a slow query against a schema summary."""
    settings = settings or get_settings()
    if not is_ai_configured(settings):
        return _missing_key_diagnosis(settings)

    try:
        llm = create_llm(settings, temperature=0.1)
        response = await llm.ainvoke(
            [
                SystemMessage(content=_SYSTEM_PROMPT),
                HumanMessage(content=f"SCHEMA: {schema}\n\nSLOW QUERY: {query}"),
            ]
        )
    except Exception:
        logger.exception("Query doctor LLM call failed")
        return FALLBACK_DIAGNOSIS

    return parse_diagnosis(str(response.content)) or FALLBACK_DIAGNOSIS
