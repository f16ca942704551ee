"""Split sections and subsections into retrieval chunks; classify and tag them.

Token counts are an approximation (words x 1.3), not a real tokenizer. Chunk
boundaries are tuned against this estimate, so keep it approximate.
"""

import itertools
import logging
import math
import re
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .models import Chunk, ChunkType, Section, Subsection

logger = logging.getLogger(__name__)


MAX_CHUNK_TOKENS = 400
MIN_CHUNK_TOKENS = 100
OVERLAP_TOKENS = 50
TOKENS_PER_WORD = 1.3

FIRST_PARAGRAPH_MIN_CHARS = 50
FIRST_PARAGRAPH_MAX_CHARS = 500
MAX_KEYWORDS = 10

PARAGRAPH_BREAK = re.compile(r"\n\n+")
SENTENCE = re.compile(r"[^.!?]+(?:[.!?]+|$)")

# Keywords for the fallback keyword-score classification
CHUNK_TYPE_KEYWORDS: Dict[ChunkType, List[str]] = {
    ChunkType.SECTION_HEADER: ["description", "scope", "general"],
    ChunkType.REQUIREMENT: ["shall", "must", "required", "minimum", "maximum", "not less than", "not more than"],
    ChunkType.PROCEDURE: ["procedure", "method", "process", "operation", "construction", "installation", "placing"],
    ChunkType.MATERIAL_SPEC: ["material", "aggregate", "cement", "concrete", "steel", "asphalt", "specification"],
    ChunkType.MEASUREMENT: ["measurement", "measured", "quantity", "pay quantity", "square yard", "linear foot", "cubic yard"],
    ChunkType.PAYMENT: ["payment", "paid", "compensation", "unit price", "lump sum", "pay item"],
    ChunkType.TABLE: ["table", "tabulated"],
    ChunkType.REFERENCE: ["section", "specification", "aashto", "astm", "refer to"],
    ChunkType.DEFINITION: ["definition", "defined as", "means", "term"],
}

TECHNICAL_PATTERNS = [
    re.compile(r"class\s+[A-Z]\b", re.I),                           # Class A, Class B
    re.compile(r"type\s+[A-Z0-9]+", re.I),                          # Type I, Type II
    re.compile(r"grade\s+\d+", re.I),                               # Grade 60
    re.compile(r"\d+\s*psi", re.I),                                 # 4000 psi
    re.compile(r"\d+(?:\.\d+)?\s*(?:inch|foot|feet|yard|mile)", re.I),
    re.compile(r"AASHTO\s+[A-Z]\s*\d+", re.I),
    re.compile(r"ASTM\s+[A-Z]\d+", re.I),
]

CONSTRUCTION_TERMS = [
    "concrete", "asphalt", "aggregate", "reinforcing", "steel", "timber",
    "curing", "mixing", "placing", "finishing", "testing", "inspection",
    "excavation", "embankment", "grading", "drainage", "culvert", "bridge",
    "guardrail", "pavement", "subgrade", "base course", "wearing course",
]


def estimate_tokens(text: str) -> int:
    """Approximate token count: ceil(word count x 1.3)."""
    word_count = len(text.split())
    # round() keeps float noise (e.g. 10 * 1.3 = 13.000000000000002) from bumping the ceiling
    return math.ceil(round(word_count * TOKENS_PER_WORD, 6))


def get_first_paragraph(text: str) -> str:
    """First paragraph of at least 50 characters, truncated to 500; else the raw prefix."""
    for paragraph in PARAGRAPH_BREAK.split(text):
        if len(paragraph.strip()) >= FIRST_PARAGRAPH_MIN_CHARS:
            return paragraph.strip()[:FIRST_PARAGRAPH_MAX_CHARS]
    return text[:FIRST_PARAGRAPH_MAX_CHARS]


def build_context(subsection: Subsection, section_title: str) -> str:
    """Breadcrumb carried on every chunk, e.g. "Section 624 > SHOTCRETE > 624.6.1 > Excavation"."""
    parts = [f"Section {subsection.section_number}"]
    if section_title:
        parts.append(section_title)
    if subsection.subsection_number:
        parts.append(subsection.subsection_number)
    if subsection.title:
        parts.append(subsection.title)
    return " > ".join(parts)


def get_overlap_text(text: str, target_tokens: int) -> str:
    """The last target_tokens worth of words of text."""
    words = text.split()
    target_words = math.ceil(target_tokens / TOKENS_PER_WORD)
    return " ".join(words[-target_words:])


def _split_by_words(text: str) -> List[str]:
    words = text.split()
    size = int(MAX_CHUNK_TOKENS / TOKENS_PER_WORD)
    return [" ".join(words[i:i + size]) for i in range(0, len(words), size)]


def split_by_sentences(text: str) -> List[str]:
    """
    Split an oversized paragraph at sentence boundaries, without overlap.

    A single sentence over the budget (e.g. text without punctuation) is cut into
    word windows of at most MAX_CHUNK_TOKENS. A trailing piece under
    MIN_CHUNK_TOKENS is dropped.
    """
    sentences = [s.strip() for s in SENTENCE.findall(text) if s.strip()] or [text.strip()]

    units: List[str] = []
    for sentence in sentences:
        if estimate_tokens(sentence) > MAX_CHUNK_TOKENS:
            units.extend(_split_by_words(sentence))
        else:
            units.append(sentence)

    pieces: List[str] = []
    current = ""
    current_tokens = 0

    for unit in units:
        unit_tokens = estimate_tokens(unit)
        if current_tokens + unit_tokens > MAX_CHUNK_TOKENS and current.strip():
            pieces.append(current.strip())
            current = unit
            current_tokens = unit_tokens
        else:
            current += (" " if current else "") + unit
            current_tokens += unit_tokens

    if current.strip() and estimate_tokens(current) >= MIN_CHUNK_TOKENS:
        pieces.append(current.strip())

    return pieces


def split_into_chunks(content: str) -> List[str]:
    """
    Split subsection content into chunk texts under the token budget.

    Args:
        content: Subsection content

    Returns:
        Chunk texts in order. Content within budget comes back whole; otherwise
        paragraphs are accumulated, and each new chunk after a flush is seeded with
        the last OVERLAP_TOKENS of the previous one. Oversized paragraphs go through
        split_by_sentences. A trailing remainder under MIN_CHUNK_TOKENS is dropped.
    """
    content = content.strip()
    if not content:
        return []

    if estimate_tokens(content) <= MAX_CHUNK_TOKENS:
        return [content]

    paragraphs = [p for p in PARAGRAPH_BREAK.split(content) if p.strip()]
    pieces: List[str] = []
    current = ""
    current_tokens = 0

    for paragraph in paragraphs:
        paragraph_tokens = estimate_tokens(paragraph)

        if paragraph_tokens > MAX_CHUNK_TOKENS:
            if current.strip():
                pieces.append(current.strip())
            current = ""
            current_tokens = 0
            pieces.extend(split_by_sentences(paragraph))
            continue

        if current_tokens + paragraph_tokens > MAX_CHUNK_TOKENS and current.strip():
            pieces.append(current.strip())
            current = get_overlap_text(current, OVERLAP_TOKENS) + "\n\n" + paragraph
            current_tokens = estimate_tokens(current)
        else:
            current += ("\n\n" if current else "") + paragraph
            current_tokens += paragraph_tokens

    if current.strip() and estimate_tokens(current) >= MIN_CHUNK_TOKENS:
        pieces.append(current.strip())

    return pieces


def _is_section_header(content: str, lower: str, subsection_number: Optional[str]) -> bool:
    if not subsection_number:
        return False
    last_part = subsection_number.split(".")[-1]
    return last_part in ("1", "01") or "description" in lower


def _is_table(content: str, lower: str, subsection_number: Optional[str]) -> bool:
    return "table " in lower or re.search(r"\|\s*\w+\s*\|", content) is not None


def _is_measurement(content: str, lower: str, subsection_number: Optional[str]) -> bool:
    return (re.search(r"method\s+of\s+measurement", content, re.I) is not None
            or ("measurement" in lower and "paid" in lower))


def _is_payment(content: str, lower: str, subsection_number: Optional[str]) -> bool:
    return (re.search(r"basis\s+of\s+payment", content, re.I) is not None
            or ("payment" in lower and "contract unit price" in lower))


# Checked in order; first match wins. Keyword scoring is the final fallback.
CLASSIFICATION_RULES: List[Tuple[Callable[[str, str, Optional[str]], bool], ChunkType]] = [
    (_is_section_header, ChunkType.SECTION_HEADER),
    (_is_table, ChunkType.TABLE),
    (_is_measurement, ChunkType.MEASUREMENT),
    (_is_payment, ChunkType.PAYMENT),
]


def score_chunk_types(content: str) -> Dict[ChunkType, int]:
    """Count keyword occurrences per chunk type (case-insensitive substrings)."""
    lower = content.lower()
    return {
        chunk_type: sum(len(re.findall(re.escape(keyword), lower)) for keyword in keywords)
        for chunk_type, keywords in CHUNK_TYPE_KEYWORDS.items()
    }


def classify_chunk_type(content: str, subsection_number: Optional[str] = None) -> ChunkType:
    """Classify a chunk by the priority rules, then by highest keyword score."""
    lower = content.lower()
    for predicate, chunk_type in CLASSIFICATION_RULES:
        if predicate(content, lower, subsection_number):
            return chunk_type

    scores = score_chunk_types(content)
    best_type = ChunkType.REQUIREMENT
    best_score = 0
    # Enum order breaks ties; strict > keeps the earliest
    for chunk_type in ChunkType:
        if scores[chunk_type] > best_score:
            best_score = scores[chunk_type]
            best_type = chunk_type
    return best_type


def extract_keywords(content: str) -> List[str]:
    """Technical designators first, then construction terms; at most 10."""
    keywords: List[str] = []

    for pattern in TECHNICAL_PATTERNS:
        for match in pattern.findall(content):
            normalized = match.lower().strip()
            if normalized not in keywords:
                keywords.append(normalized)

    lower = content.lower()
    for term in CONSTRUCTION_TERMS:
        if term in lower and term not in keywords:
            keywords.append(term)

    return keywords[:MAX_KEYWORDS]


def _make_chunk(
    content: str,
    section_number: str,
    subsection_number: Optional[str],
    context: str,
    chunk_index: int,
    pay_item_codes: List[str],
    page_number: Optional[int],
) -> Chunk:
    clean_content = content.strip()
    return Chunk(
        section_number=section_number,
        subsection_number=subsection_number,
        section_context=context,
        content=clean_content,
        chunk_type=classify_chunk_type(clean_content, subsection_number),
        chunk_index=chunk_index,
        token_count=estimate_tokens(clean_content),
        page_number=page_number,
        pay_item_codes=list(pay_item_codes),
        keywords=extract_keywords(clean_content),
    )


def create_chunks(sections: List[Section], subsections: List[Subsection]) -> List[Chunk]:
    """
    Create retrieval chunks for a whole ingestion run.

    One header chunk per section, then the chunks of every subsection. Indexes come
    from one counter for the run, so they increase strictly with no gaps.

    Args:
        sections: Parsed sections
        subsections: Parsed subsections

    Returns:
        Chunks in emission order
    """
    logger.info("Creating chunks for retrieval")

    chunks: List[Chunk] = []
    next_index: Iterator[int] = itertools.count()
    sections_by_number = {section.section_number: section for section in sections}

    for section in sections:
        header = f"Section {section.section_number} - {section.title}"
        chunks.append(_make_chunk(
            f"{header}\n\n{get_first_paragraph(section.full_text)}",
            section.section_number,
            None,
            header,
            next(next_index),
            section.related_pay_items,
            section.start_page,
        ))

    for subsection in subsections:
        section = sections_by_number.get(subsection.section_number)
        section_title = section.title if section else ""
        pay_item_codes = section.related_pay_items if section else []
        context = build_context(subsection, section_title)

        for piece in split_into_chunks(subsection.content):
            chunks.append(_make_chunk(
                piece,
                subsection.section_number,
                subsection.subsection_number,
                context,
                next(next_index),
                pay_item_codes,
                subsection.page_number,
            ))

    logger.info(f"Created {len(chunks)} chunks")
    if chunks:
        average = round(sum(c.token_count for c in chunks) / len(chunks))
        logger.info(f"Average tokens per chunk: {average}")

    return chunks
