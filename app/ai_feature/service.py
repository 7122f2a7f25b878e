"""Question -> SQL -> rows -> answer.

Flow:
1. GENERATE_SQL              prompt with the literal schema, temperature 0
2. VALIDATE                  static gate; one strict regeneration when rejected
3. SCHEMA_FETCH              exact columns for every referenced table
4. SCHEMA_AWARE_REGENERATE   optional refinement with those columns
5. EXECUTE                   exec_sql remote procedure, exactly once
6. SUMMARIZE                 short answer in Bahasa Indonesia, temperature 0.2
7. RESPOND_JSON | RENDER_PDF
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from fastapi import Depends
from pydantic import BaseModel, Field

from app.ai_feature.errors import (
    ConfigError,
    ExecutionError,
    GenerationError,
    InputError,
    InvalidSQLError,
    SummaryError,
)
from app.ai_feature.llm_gateway import (
    LLMError,
    LLMGateway,
    LLMResponseError,
    get_llm_gateway,
)
from app.ai_feature.report import ReportRenderer
from app.ai_feature.sanitizer import sanitize_sql
from app.ai_feature.schema_introspector import SchemaIntrospector, format_snippet
from app.ai_feature.validator import ALLOWED_TABLES, SQLVerdict, validate_sql
from app.core.config import settings
from app.core.database import (
    Datastore,
    DatastoreConfigError,
    DatastoreError,
    get_datastore,
    normalize_rows,
)
from app.core.schemas import QueryRequest

logger = logging.getLogger(__name__)

PDF_TRIGGER_WORDS = (
    "print",
    "cetak",
    "rekap",
    "rekapan",
    "export",
    "download",
    "unduh",
    "pdf",
)

GENERATION_TEMPERATURE = 0
SUMMARY_TEMPERATURE = 0.2

SQL_PROMPT = """You are a SQL generator for a CRM analytics chatbot.
Given a natural language question about members, orders, or products, return ONLY valid PostgreSQL SQL (no explanation).
Database schema:
- members(id uuid, name text, email text, joined_at timestamp)
- products(id uuid, name text, price numeric, category text)
- orders(id uuid, member_id uuid, order_date timestamp, total numeric)
- order_items(id uuid, order_id uuid, product_id uuid, quantity int, subtotal numeric)

Question: "{question}"

Return only SQL query in plain text, nothing else."""

STRICT_PROMPT = """The previously generated SQL was invalid for safe execution.
Please provide a single valid PostgreSQL SELECT query ONLY (no explanation) that answers the same question, and use only these tables: {tables}.
Question: {question}"""

SCHEMA_AWARE_PROMPT = """Use only these tables and columns (exact schema):
{schema}

Question: {question}

Return ONLY a single valid PostgreSQL SELECT query that answers the question. No explanation."""

SUMMARY_PROMPT = """You are a concise assistant. Given the SQL query:
{sql}
And the query results as JSON:
{rows}
Provide a short, human-friendly summary in Bahasa Indonesia, highlighting key numbers or top rows if relevant. Keep it brief."""


class QueryStage(str, Enum):
    GENERATE_SQL = "generate_sql"
    VALIDATE = "validate"
    REGENERATE_STRICT = "regenerate_strict"
    SCHEMA_FETCH = "schema_fetch"
    SCHEMA_AWARE_REGENERATE = "schema_aware_regenerate"
    EXECUTE = "execute"
    SUMMARIZE = "summarize"
    RENDER_PDF = "render_pdf"
    RESPOND_JSON = "respond_json"
    # Terminal failures
    INVALID_SQL = "invalid_sql"
    EXEC_ERROR = "exec_error"
    UPSTREAM_ERROR = "upstream_error"


class SQLProvenance(str, Enum):
    INITIAL = "initial"
    REGENERATED = "regenerated"
    SCHEMA_AWARE = "schema_aware"


class CandidateSQL(BaseModel):
    sql: str
    provenance: SQLProvenance
    verdict: Optional[SQLVerdict] = None


class QueryOutcome(BaseModel):
    question: str
    want_pdf: bool
    answer: str
    executed_sql: str
    tables: List[str] = Field(default_factory=list)
    row_count: int
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    stages: List[QueryStage] = Field(default_factory=list)


class QueryRun:
    """State of one question as it moves through the stages."""

    def __init__(self, question: str, want_pdf: bool):
        self.question = question
        self.want_pdf = want_pdf
        self.stages: List[QueryStage] = []
        self.candidates: List[CandidateSQL] = []
        self.schema: Dict[str, List[str]] = {}
        self.rows: List[Dict[str, Any]] = []
        self.answer: Optional[str] = None

    @property
    def candidate(self) -> Optional[CandidateSQL]:
        return self.candidates[-1] if self.candidates else None

    def enter(self, stage: QueryStage):
        self.stages.append(stage)
        logger.info(f"[query] {stage.value}")

    def propose(self, sql: str, provenance: SQLProvenance) -> CandidateSQL:
        candidate = CandidateSQL(sql=sql, provenance=provenance)
        self.candidates.append(candidate)
        logger.info(f"Sanitized {provenance.value} SQL: {sql}")
        return candidate


def wants_pdf(question: Optional[str], output_format: Optional[str] = None) -> bool:
    """Explicit ``format: "pdf"`` or a trigger word anywhere in the question."""
    if isinstance(output_format, str) and output_format.lower() == "pdf":
        return True
    if not question or not isinstance(question, str):
        return False
    lowered = question.lower()
    return any(word in lowered for word in PDF_TRIGGER_WORDS)


class QueryService:
    def __init__(
        self,
        gateway: LLMGateway,
        datastore: Datastore,
        introspector: Optional[SchemaIntrospector] = None,
        renderer: Optional[ReportRenderer] = None,
        row_limit: int = 50,
    ):
        self.gateway = gateway
        self.datastore = datastore
        self.introspector = introspector or SchemaIntrospector(datastore)
        self.renderer = renderer or ReportRenderer()
        self.row_limit = row_limit

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def _generate(self, run: QueryRun) -> CandidateSQL:
        run.enter(QueryStage.GENERATE_SQL)
        try:
            content = await self.gateway.complete(
                SQL_PROMPT.format(question=run.question), GENERATION_TEMPERATURE
            )
        except LLMError as e:
            run.enter(QueryStage.UPSTREAM_ERROR)
            raise self._upstream_failure("SQL gen error", e)
        return run.propose(sanitize_sql(content), SQLProvenance.INITIAL)

    def _validate(self, run: QueryRun, candidate: CandidateSQL) -> SQLVerdict:
        run.enter(QueryStage.VALIDATE)
        candidate.verdict = validate_sql(candidate.sql)
        if not candidate.verdict.ok:
            logger.warning(f"SQL rejected: {candidate.verdict.reason}")
        return candidate.verdict

    async def _regenerate_strict(self, run: QueryRun) -> Optional[CandidateSQL]:
        run.enter(QueryStage.REGENERATE_STRICT)
        prompt = STRICT_PROMPT.format(
            tables=", ".join(ALLOWED_TABLES), question=run.question
        )
        try:
            content = await self.gateway.complete(prompt, GENERATION_TEMPERATURE)
        except LLMResponseError as e:
            # Non-OK reply: keep the rejected candidate
            logger.warning(f"Strict regeneration returned {e.status_code}")
            return None
        except LLMError as e:
            run.enter(QueryStage.UPSTREAM_ERROR)
            raise self._upstream_failure("SQL regen error", e)
        return run.propose(sanitize_sql(content), SQLProvenance.REGENERATED)

    async def _fetch_schema(self, run: QueryRun, tables: List[str]):
        run.enter(QueryStage.SCHEMA_FETCH)
        run.schema = await self.introspector.build_snippet(tables)

    async def _regenerate_with_schema(self, run: QueryRun) -> Optional[CandidateSQL]:
        run.enter(QueryStage.SCHEMA_AWARE_REGENERATE)
        prompt = SCHEMA_AWARE_PROMPT.format(
            schema=format_snippet(run.schema), question=run.question
        )
        try:
            content = await self.gateway.complete(prompt, GENERATION_TEMPERATURE)
        except LLMError as e:
            logger.warning(f"Schema-aware regeneration failed: {e}")
            return None

        sql = sanitize_sql(content)
        if not sql:
            return None
        return run.propose(sql, SQLProvenance.SCHEMA_AWARE)

    async def _execute(self, run: QueryRun, sql: str):
        run.enter(QueryStage.EXECUTE)
        try:
            payload = await self.datastore.execute(sql)
        except DatastoreConfigError as e:
            raise ConfigError(str(e))
        except DatastoreError as e:
            run.enter(QueryStage.EXEC_ERROR)
            logger.error(f"Exec SQL RPC error: {e}")
            raise ExecutionError(detail=str(e), sql=sql)
        run.rows = normalize_rows(payload)

    async def _summarize(self, run: QueryRun, sql: str) -> str:
        run.enter(QueryStage.SUMMARIZE)
        prompt = SUMMARY_PROMPT.format(
            sql=sql, rows=json.dumps(run.rows[: self.row_limit], default=str)
        )
        try:
            content = await self.gateway.complete(prompt, SUMMARY_TEMPERATURE)
        except LLMError as e:
            run.enter(QueryStage.UPSTREAM_ERROR)
            logger.error(f"Summary gen error: {e}")
            raise SummaryError()
        return content or "(no summary)"

    @staticmethod
    def _upstream_failure(label: str, error: LLMError) -> GenerationError:
        if isinstance(error, LLMResponseError):
            logger.error(f"{label}: {error.status_code} {error.body}")
            return GenerationError(
                upstream_status=error.status_code, upstream_body=error.body
            )
        logger.error(f"{label}: {error}")
        return GenerationError()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(self, request: QueryRequest) -> QueryOutcome:
        """
        Answer one question end to end.

        Raises:
            InputError: no question
            ConfigError: completion API key or datastore settings missing
            GenerationError: completion API failed while producing SQL
            InvalidSQLError: SQL still rejected after regeneration
            ExecutionError: exec_sql failed
            SummaryError: summary call failed after the query ran
        """
        question = request.question
        if isinstance(question, (int, float)) and not isinstance(question, bool):
            question = str(question)
        want_pdf = wants_pdf(question, request.format)
        if question is not None and not isinstance(question, str):
            raise InputError("Question must be text")
        if not question or not question.strip():
            raise InputError("Question required")
        if not self.gateway.api_key:
            raise ConfigError("Mistral API key not configured")

        run = QueryRun(str(question), want_pdf)

        candidate = await self._generate(run)
        verdict = self._validate(run, candidate)
        if not verdict.ok:
            regenerated = await self._regenerate_strict(run)
            if regenerated is not None:
                candidate = regenerated
                verdict = self._validate(run, candidate)
        if not verdict.ok:
            run.enter(QueryStage.INVALID_SQL)
            raise InvalidSQLError(reason=verdict.reason, sql=candidate.sql)

        await self._fetch_schema(run, verdict.tables)
        refined = await self._regenerate_with_schema(run)
        if refined is not None:
            candidate = refined
            verdict = self._validate(run, candidate)
            if not verdict.ok:
                run.enter(QueryStage.INVALID_SQL)
                raise InvalidSQLError(reason=verdict.reason, sql=candidate.sql)

        await self._execute(run, candidate.sql)
        run.answer = await self._summarize(run, candidate.sql)
        run.enter(QueryStage.RENDER_PDF if want_pdf else QueryStage.RESPOND_JSON)

        return QueryOutcome(
            question=run.question,
            want_pdf=want_pdf,
            answer=run.answer,
            executed_sql=candidate.sql,
            tables=verdict.tables,
            row_count=len(run.rows),
            rows=run.rows[: self.row_limit],
            stages=run.stages,
        )

    def render_pdf(
        self, outcome: QueryOutcome, generated_at: Optional[datetime] = None
    ) -> bytes:
        return self.renderer.render(
            summary=outcome.answer,
            row_count=outcome.row_count,
            tables=outcome.tables,
            generated_at=generated_at,
        )


def get_query_service(
    gateway: Annotated[LLMGateway, Depends(get_llm_gateway)],
    datastore: Annotated[Datastore, Depends(get_datastore)],
) -> QueryService:
    return QueryService(
        gateway=gateway,
        datastore=datastore,
        introspector=SchemaIntrospector(datastore, settings.SCHEMA_FILE_PATHS),
        row_limit=settings.SUMMARY_ROW_LIMIT,
    )
