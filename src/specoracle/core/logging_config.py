"""Structured logging configuration for specoracle."""

import logging
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging with audit capabilities."""

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_ingestion_event(
    logger: structlog.BoundLogger,
    document_id: Optional[str],
    stage_counts: Dict[str, Dict[str, int]],
    processing_time_ms: float,
    succeeded: bool,
    source_hash: Optional[str] = None,
) -> None:
    """Log a specification import run with per-stage success/failure counts."""
    logger.info(
        "specification_imported" if succeeded else "specification_import_failed",
        document_id=document_id,
        stage_counts=stage_counts,
        processing_time_ms=processing_time_ms,
        source_hash=source_hash,
        event_type="spec_ingestion",
    )


def log_embedding_usage(
    logger: structlog.BoundLogger,
    model: str,
    chunk_count: int,
    batch_count: int,
    total_tokens: int,
    estimated_cost: float,
) -> None:
    """Log approximate embedding usage for operational visibility."""
    logger.info(
        "embeddings_generated",
        model=model,
        chunk_count=chunk_count,
        batch_count=batch_count,
        total_tokens=total_tokens,
        estimated_cost_usd=round(estimated_cost, 4),
        event_type="embedding_usage",
    )


def log_spec_query(
    logger: structlog.BoundLogger,
    query: str,
    filters_applied: Dict[str, Any],
    result_count: int,
    top_chunk_ids: List[str],
    synthesized: bool,
    execution_time_ms: float,
) -> None:
    """Log a specification query with its filters and outcome."""
    logger.info(
        "spec_query_completed",
        query=query,
        filters_applied=filters_applied,
        result_count=result_count,
        top_chunk_ids=top_chunk_ids,
        synthesized=synthesized,
        execution_time_ms=execution_time_ms,
        event_type="spec_query",
    )
