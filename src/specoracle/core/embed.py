"""OpenAI embedding generation: fixed-size batches, backoff retry, model/dim stored per vector."""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import openai
from dotenv import load_dotenv
from tenacity import Retrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from .exceptions import EmbeddingError
from .logging_config import get_audit_logger, log_embedding_usage
from .models import Chunk, ChunkWithEmbedding

load_dotenv()

logger = logging.getLogger(__name__)


MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}
COST_PER_MILLION_TOKENS = 0.02  # text-embedding-3-small list price, USD

# Rate limits, 5xx and timeouts are transient. APITimeoutError is an APIConnectionError.
RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    TimeoutError,
)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100  # OpenAI per-request input limit is well above this
    max_retries: int = 3
    retry_base_delay: float = 1.0
    batch_delay: float = 0.2
    request_timeout: float = 60.0
    max_workers: int = 1
    max_tokens: int = 8191


@dataclass
class EmbeddingBatch:
    """One embedding request: a numbered, ordered slice of the run's chunks."""
    batch_number: int
    chunks: List[Chunk] = field(default_factory=list)

    @property
    def texts(self) -> List[str]:
        return [build_embedding_text(chunk) for chunk in self.chunks]


def get_embedding_config() -> EmbeddingConfig:
    """Get embedding configuration from environment."""
    model = os.getenv("EMBED_MODEL", "text-embedding-3-small")

    return EmbeddingConfig(
        model=model,
        dimensions=int(os.getenv("EMBED_DIMENSIONS", str(MODEL_DIMENSIONS.get(model, 1536)))),
        batch_size=int(os.getenv("EMBED_BATCH_SIZE", "100")),
        max_retries=int(os.getenv("EMBED_MAX_RETRIES", "3")),
        retry_base_delay=float(os.getenv("EMBED_RETRY_BASE_DELAY", "1.0")),
        batch_delay=float(os.getenv("EMBED_BATCH_DELAY", "0.2")),
        request_timeout=float(os.getenv("EMBED_TIMEOUT", "60")),
        max_workers=int(os.getenv("EMBED_MAX_WORKERS", "1")),
    )


def get_openai_client(timeout: Optional[float] = None) -> openai.OpenAI:
    """OpenAI client with an explicit timeout; retries are handled here, not by the SDK."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OpenAI API key not found in environment variables")

    return openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)


def build_embedding_text(chunk: Chunk) -> str:
    """Context breadcrumb plus content; the context disambiguates short chunks."""
    context_prefix = f"{chunk.section_context}\n\n" if chunk.section_context else ""
    return context_prefix + chunk.content


def plan_batches(chunks: List[Chunk], batch_size: int) -> List[EmbeddingBatch]:
    """Split chunks into ordered batches of at most batch_size."""
    return [
        EmbeddingBatch(batch_number=i // batch_size + 1, chunks=chunks[i:i + batch_size])
        for i in range(0, len(chunks), batch_size)
    ]


def estimate_embedding_cost(chunks: List[Chunk], cost_per_million: float = COST_PER_MILLION_TOKENS) -> Tuple[int, float]:
    """Approximate (total tokens, USD cost) from the chunks' estimated token counts."""
    total_tokens = sum(chunk.token_count for chunk in chunks)
    return total_tokens, total_tokens / 1_000_000 * cost_per_million


def _log_retry(retry_state: RetryCallState) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Embedding request failed (attempt {retry_state.attempt_number}), "
        f"retrying in {delay:.1f}s: {retry_state.outcome.exception()}"
    )


def _request_embeddings(texts: List[str], config: EmbeddingConfig, client: openai.OpenAI) -> List[List[float]]:
    truncated_texts = []
    for text in texts:
        # Simple token approximation: ~4 chars per token
        if len(text) > config.max_tokens * 4:
            logger.warning(f"Truncated text from {len(text)} to {config.max_tokens * 4} characters")
            text = text[:config.max_tokens * 4]
        truncated_texts.append(text)

    response = client.embeddings.create(
        model=config.model,
        input=truncated_texts,
        dimensions=config.dimensions,
    )

    embeddings = [item.embedding for item in sorted(response.data, key=lambda item: item.index)]

    if len(embeddings) != len(texts):
        raise EmbeddingError(f"Expected {len(texts)} embeddings, received {len(embeddings)}")
    for embedding in embeddings:
        if len(embedding) != config.dimensions:
            raise EmbeddingError(
                f"Embedding dimension {len(embedding)} does not match configured {config.dimensions}",
                details={"model": config.model},
            )

    return embeddings


def generate_embeddings_batch(
    texts: List[str],
    config: EmbeddingConfig,
    client: openai.OpenAI,
    batch_number: Optional[int] = None,
) -> List[List[float]]:
    """
    Generate embeddings for one batch, retrying transient failures.

    Args:
        texts: Texts to embed, at most config.batch_size
        config: Embedding configuration
        client: OpenAI client instance
        batch_number: Batch number for error reporting

    Returns:
        Embedding vectors in input order

    Raises:
        EmbeddingError: Retries exhausted, or the service rejected the request
    """
    retryer = Retrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=wait_exponential(multiplier=config.retry_base_delay),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=_log_retry,
        reraise=True,
    )

    try:
        return retryer(_request_embeddings, texts, config, client)
    except RETRYABLE_ERRORS as e:
        raise EmbeddingError(
            f"Embedding batch failed after {config.max_retries} retries: {e}",
            batch_number=batch_number,
            attempts=config.max_retries + 1,
        ) from e
    except openai.OpenAIError as e:
        raise EmbeddingError(f"Embedding request rejected: {e}", batch_number=batch_number) from e


def _embed_sequential(batches: List[EmbeddingBatch], config: EmbeddingConfig, client: openai.OpenAI) -> List[List[List[float]]]:
    results = []
    for i, batch in enumerate(batches):
        logger.info(f"Processing embedding batch {batch.batch_number}/{len(batches)}: {len(batch.chunks)} chunks")
        results.append(generate_embeddings_batch(batch.texts, config, client, batch.batch_number))

        # Rate limiting between batches
        if i < len(batches) - 1:
            time.sleep(config.batch_delay)
    return results


def _embed_parallel(batches: List[EmbeddingBatch], config: EmbeddingConfig, client: openai.OpenAI) -> List[List[List[float]]]:
    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        futures = []
        for i, batch in enumerate(batches):
            logger.info(f"Submitting embedding batch {batch.batch_number}/{len(batches)}: {len(batch.chunks)} chunks")
            futures.append(executor.submit(
                generate_embeddings_batch, batch.texts, config, client, batch.batch_number
            ))
            if i < len(batches) - 1:
                time.sleep(config.batch_delay)

        try:
            return [future.result() for future in futures]
        except EmbeddingError:
            for future in futures:
                future.cancel()
            raise


def generate_embeddings(
    chunks: List[Chunk],
    client: Optional[openai.OpenAI] = None,
    config: Optional[EmbeddingConfig] = None,
) -> List[ChunkWithEmbedding]:
    """
    Embed all chunks of an ingestion run.

    Args:
        chunks: Chunks in emission order
        client: OpenAI client (created from the environment if omitted)
        config: Embedding configuration (optional)

    Returns:
        Chunks with embeddings, in the same order as the input

    Raises:
        EmbeddingError: Any batch exhausted its retries; no partial result is returned
    """
    if not chunks:
        return []

    if config is None:
        config = get_embedding_config()
    if client is None:
        client = get_openai_client(config.request_timeout)

    batches = plan_batches(chunks, config.batch_size)
    logger.info(f"Generating embeddings with {config.model}: {len(chunks)} chunks in {len(batches)} batches")

    if config.max_workers > 1 and len(batches) > 1:
        batch_embeddings = _embed_parallel(batches, config, client)
    else:
        batch_embeddings = _embed_sequential(batches, config, client)

    results: List[ChunkWithEmbedding] = []
    for batch, embeddings in zip(batches, batch_embeddings):
        for chunk, embedding in zip(batch.chunks, embeddings):
            results.append(ChunkWithEmbedding(
                **chunk.model_dump(),
                embedding=embedding,
                embed_model=config.model,
                vector_dim=config.dimensions,
            ))

    total_tokens, estimated_cost = estimate_embedding_cost(chunks)
    logger.info(f"Generated {len(results)} embeddings, estimated cost ${estimated_cost:.4f}")
    log_embedding_usage(
        get_audit_logger("embed"),
        model=config.model,
        chunk_count=len(results),
        batch_count=len(batches),
        total_tokens=total_tokens,
        estimated_cost=estimated_cost,
    )

    return results


def embed_query(
    text: str,
    client: Optional[openai.OpenAI] = None,
    config: Optional[EmbeddingConfig] = None,
) -> List[float]:
    """Embed a query with the same model and dimension used at ingestion."""
    if config is None:
        config = get_embedding_config()
    if client is None:
        client = get_openai_client(config.request_timeout)

    return generate_embeddings_batch([text], config, client)[0]
