"""Specification import: load text, parse, chunk, embed, persist."""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

import fitz  # PyMuPDF
import openai
from pydantic import BaseModel, Field

from .chunk import create_chunks
from .embed import EmbeddingConfig, generate_embeddings
from .exceptions import EmbeddingError
from .logging_config import get_audit_logger, log_ingestion_event
from .parse_structure import parse_specifications
from .store import PgSpecStore, SpecDocumentInfo

logger = logging.getLogger(__name__)


class StageCount(BaseModel):
    succeeded: int = 0
    failed: int = 0


class ImportSummary(BaseModel):
    """Per-stage outcome of one import run."""
    document_id: Optional[str] = None
    divisions: StageCount = Field(default_factory=StageCount)
    sections: StageCount = Field(default_factory=StageCount)
    subsections: StageCount = Field(default_factory=StageCount)
    pay_items: StageCount = Field(default_factory=StageCount)
    chunks: StageCount = Field(default_factory=StageCount)
    embeddings: StageCount = Field(default_factory=StageCount)
    processing_time_ms: int = 0

    def stage_counts(self) -> Dict[str, Dict[str, int]]:
        return {
            stage: getattr(self, stage).model_dump()
            for stage in ("divisions", "sections", "subsections", "pay_items", "chunks", "embeddings")
        }


def calculate_sha256(file_path: Path) -> str:
    """Calculate SHA256 hash of a file."""
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


def load_parseur_documents(paths: List[Path]) -> str:
    """Concatenate the TextDocument field of Parseur JSON exports, in order."""
    texts = []
    for path in paths:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        text = data.get("TextDocument", "")
        name = data.get("OriginalDocument", {}).get("name", path.name)
        logger.info(f"Loaded {name}: {len(text) // 1024} KB")
        texts.append(text)

    combined = "\n".join(texts)
    logger.info(f"Combined text: {len(combined) // 1024} KB")
    return combined


def extract_pdf_text(pdf_path: Path) -> str:
    """Text layer of a PDF, pages separated by form feeds."""
    doc = fitz.open(pdf_path)
    try:
        pages = [doc[page_num].get_text("text") for page_num in range(doc.page_count)]
    finally:
        doc.close()

    logger.info(f"Extracted {len(pages)} pages from {pdf_path}")
    return "\f".join(pages)


def import_specifications(
    text: str,
    store: PgSpecStore,
    client: Optional[openai.OpenAI] = None,
    config: Optional[EmbeddingConfig] = None,
    document_info: Optional[SpecDocumentInfo] = None,
    clean: bool = False,
) -> ImportSummary:
    """
    Run the full import pipeline for one specification document.

    Args:
        text: Raw document text, pages optionally separated by form feeds
        store: Persistence adapter
        client: OpenAI client for embeddings (created from the environment if omitted)
        config: Embedding configuration (optional)
        document_info: Document metadata (defaults to the current standard specifications)
        clean: Delete existing specification data first

    Returns:
        ImportSummary with per-stage succeeded/failed counts

    Raises:
        EmbeddingError: Embedding exhausted its retries; nothing has been written
    """
    start_time = time.time()
    audit_logger = get_audit_logger("ingest")
    document_info = document_info or SpecDocumentInfo()
    summary = ImportSummary()

    parsed = parse_specifications(text)
    chunks = create_chunks(parsed.sections, parsed.subsections)
    summary.chunks.succeeded = len(chunks)

    # Nothing is written until every chunk has an embedding
    try:
        embedded = generate_embeddings(chunks, client, config)
    except EmbeddingError:
        summary.embeddings.failed = len(chunks)
        summary.processing_time_ms = int((time.time() - start_time) * 1000)
        log_ingestion_event(
            audit_logger,
            document_id=None,
            stage_counts=summary.stage_counts(),
            processing_time_ms=summary.processing_time_ms,
            succeeded=False,
            source_hash=document_info.source_sha256,
        )
        raise
    summary.embeddings.succeeded = len(embedded)

    if clean:
        store.clean_existing_data()

    document_id = store.insert_spec_document(document_info)
    summary.document_id = document_id

    division_ids = store.insert_divisions(document_id, parsed.divisions)
    summary.divisions = StageCount(succeeded=len(division_ids), failed=len(parsed.divisions) - len(division_ids))

    section_ids = store.insert_sections(document_id, division_ids, parsed.sections)
    summary.sections = StageCount(succeeded=len(section_ids), failed=len(parsed.sections) - len(section_ids))

    subsection_ids = store.insert_subsections(section_ids, parsed.subsections)
    summary.subsections = StageCount(
        succeeded=len(subsection_ids), failed=len(parsed.subsections) - len(subsection_ids)
    )

    inserted_chunks = store.insert_chunks(document_id, section_ids, subsection_ids, embedded)
    summary.chunks.failed = len(embedded) - inserted_chunks
    summary.chunks.succeeded = inserted_chunks

    inserted_links = store.insert_pay_item_links(document_id, section_ids, parsed.pay_items)
    summary.pay_items = StageCount(succeeded=inserted_links, failed=len(parsed.pay_items) - inserted_links)

    store.update_document_status(document_id, "COMPLETED", len(section_ids), inserted_chunks)

    summary.processing_time_ms = int((time.time() - start_time) * 1000)
    log_ingestion_event(
        audit_logger,
        document_id=document_id,
        stage_counts=summary.stage_counts(),
        processing_time_ms=summary.processing_time_ms,
        succeeded=True,
        source_hash=document_info.source_sha256,
    )
    logger.info(
        f"Imported document {document_id}: {summary.sections.succeeded} sections, "
        f"{summary.subsections.succeeded} subsections, {inserted_chunks} chunks, "
        f"{inserted_links} pay item links in {summary.processing_time_ms}ms"
    )
    return summary
