"""Query-time retrieval: embed, filtered similarity search, threshold/cap, optional synthesis."""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .embed import EmbeddingConfig, embed_query, get_embedding_config
from .exceptions import QueryValidationError, SearchError
from .logging_config import get_audit_logger, log_spec_query
from .models import ChunkMatch, ConversationTurn
from .store import PgSpecStore
from .synthesize import OpenAICompleter, synthesize_answer

load_dotenv()

logger = logging.getLogger(__name__)


TOP_CHUNKS_LOGGED = 5


@dataclass
class RetrievalConfig:
    """Configuration for specification retrieval."""
    match_threshold: float = 0.4
    max_results: int = 5


def get_retrieval_config() -> RetrievalConfig:
    """Get retrieval configuration from environment."""
    return RetrievalConfig(
        match_threshold=float(os.getenv("MATCH_THRESHOLD", "0.4")),
        max_results=int(os.getenv("MAX_RESULTS", "5")),
    )


class SpecQuery(BaseModel):
    """A natural-language specification question with optional filters."""
    query: str
    pay_item_code: Optional[str] = None
    section_numbers: Optional[List[str]] = None
    max_results: Optional[int] = Field(default=None, ge=1, le=50)
    include_synthesis: bool = True
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    bid_project_id: Optional[str] = None
    line_item_id: Optional[str] = None


class QueryResponse(BaseModel):
    success: bool
    query: str
    answer: Optional[str] = None
    chunks: List[ChunkMatch] = Field(default_factory=list)
    related_sections: List[str] = Field(default_factory=list)
    pay_item_info: Optional[Dict[str, Any]] = None
    query_time_ms: int = 0


def apply_threshold(matches: List[ChunkMatch], threshold: float, limit: int) -> List[ChunkMatch]:
    """Drop matches below the threshold and cap the count, preserving search order."""
    return [m for m in matches if m.similarity >= threshold][:limit]


def related_sections(matches: List[ChunkMatch]) -> List[str]:
    """Distinct section numbers in rank order."""
    sections: List[str] = []
    for match in matches:
        if match.section_number and match.section_number not in sections:
            sections.append(match.section_number)
    return sections


class SpecRetriever:
    """
    Stateless per-request retrieval over the specification index.

    Embedding and search failures propagate (EmbeddingError, SearchError) so a
    caller can tell "service unavailable" from "no relevant content". Synthesis
    failure only drops the answer. Query logging runs on a background executor
    and never affects the response.
    """

    def __init__(
        self,
        store: PgSpecStore,
        client: Optional[openai.OpenAI] = None,
        completer: Optional[OpenAICompleter] = None,
        config: Optional[RetrievalConfig] = None,
        embedding_config: Optional[EmbeddingConfig] = None,
        log_executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.client = client
        self.completer = completer
        self.config = config or get_retrieval_config()
        self.embedding_config = embedding_config or get_embedding_config()
        self._log_executor = log_executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="spec-query-log")
        self.audit_logger = get_audit_logger("retrieve")

    def close(self) -> None:
        """Wait for pending query-log writes."""
        self._log_executor.shutdown(wait=True)

    def _search(self, request: SpecQuery, query_embedding: List[float]) -> List[ChunkMatch]:
        section_ids = None
        if request.section_numbers:
            section_ids = self.store.get_section_ids(request.section_numbers)
        pay_item_codes = [request.pay_item_code] if request.pay_item_code else None
        limit = request.max_results or self.config.max_results

        rows = self.store.search(
            query_embedding,
            threshold=self.config.match_threshold,
            k=limit,
            section_ids=section_ids,
            pay_item_codes=pay_item_codes,
            embed_model=self.embedding_config.model,
        )
        matches = [ChunkMatch(**row) for row in rows]
        return apply_threshold(matches, self.config.match_threshold, limit)

    def _write_query_log(self, record: Dict[str, Any]) -> None:
        try:
            self.store.log_query(record)
        except Exception as e:
            logger.warning(f"Failed to log spec query: {e}")

    def query(self, request: SpecQuery) -> QueryResponse:
        """
        Answer a specification question.

        Args:
            request: Query text, filters and conversation history

        Returns:
            QueryResponse; an empty chunk list is a valid "nothing relevant" result

        Raises:
            QueryValidationError: Blank query, or a section filter given but empty
            EmbeddingError: Query could not be embedded
            SearchError: Similarity search failed
        """
        start_time = time.time()

        if not request.query.strip():
            raise QueryValidationError("Query text is required", field="query")
        if request.section_numbers is not None and not request.section_numbers:
            raise QueryValidationError("section_numbers filter must not be empty", field="section_numbers")

        # Embed with the ingestion model; vectors from different models are not comparable
        query_embedding = embed_query(request.query, self.client, self.embedding_config)

        matches = self._search(request, query_embedding)

        pay_item_info = None
        if request.pay_item_code:
            try:
                pay_item_info = self.store.get_pay_item(request.pay_item_code)
            except SearchError as e:
                logger.warning(f"Pay item lookup failed for {request.pay_item_code}: {e}")

        answer = None
        if request.include_synthesis and matches and self.completer is not None:
            answer = synthesize_answer(
                self.completer,
                request.query,
                matches,
                request.conversation_history,
                pay_item_info,
            )

        query_time_ms = int((time.time() - start_time) * 1000)
        top_chunk_ids = [m.chunk_id for m in matches[:TOP_CHUNKS_LOGGED]]

        self._log_executor.submit(self._write_query_log, {
            "query_text": request.query,
            "query_embedding": query_embedding,
            "bid_project_id": request.bid_project_id,
            "line_item_id": request.line_item_id,
            "result_count": len(matches),
            "top_chunk_ids": top_chunk_ids,
            "response_text": answer,
            "query_time_ms": query_time_ms,
        })

        log_spec_query(
            self.audit_logger,
            query=request.query,
            filters_applied={
                "pay_item_code": request.pay_item_code,
                "section_numbers": request.section_numbers,
            },
            result_count=len(matches),
            top_chunk_ids=top_chunk_ids,
            synthesized=answer is not None,
            execution_time_ms=query_time_ms,
        )
        logger.info(f"Query returned {len(matches)} chunks in {query_time_ms}ms")

        return QueryResponse(
            success=True,
            query=request.query,
            answer=answer,
            chunks=matches,
            related_sections=related_sections(matches),
            pay_item_info=pay_item_info,
            query_time_ms=query_time_ms,
        )
