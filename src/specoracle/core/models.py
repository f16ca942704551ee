"""Specification entities shared by the parser, chunker, embedder and store."""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Division(BaseModel):
    """Top-level classification (e.g. 200 EARTHWORK)."""
    number: int
    title: str


class Section(BaseModel):
    """A numbered specification section, e.g. 624 SHOTCRETE."""
    section_number: str
    title: str
    division_number: int
    full_text: str
    related_pay_items: List[str] = Field(default_factory=list)
    start_page: Optional[int] = None
    end_page: Optional[int] = None


class Subsection(BaseModel):
    """A dotted subsection such as 624.6.1, owned by its section's number."""
    section_number: str
    subsection_number: str
    title: str
    content: str
    hierarchy_level: int
    parent_subsection: Optional[str] = None
    cross_references: List[str] = Field(default_factory=list)
    page_number: Optional[int] = None


class PayItem(BaseModel):
    """Billable item code referenced by a section."""
    item_number: str
    description: str
    unit: str
    section_number: str


class ParseResult(BaseModel):
    divisions: List[Division] = Field(default_factory=list)
    sections: List[Section] = Field(default_factory=list)
    subsections: List[Subsection] = Field(default_factory=list)
    pay_items: List[PayItem] = Field(default_factory=list)


class ChunkType(str, Enum):
    """Content classification for a chunk. Member order is the scoring tiebreak."""
    SECTION_HEADER = "SECTION_HEADER"
    REQUIREMENT = "REQUIREMENT"
    PROCEDURE = "PROCEDURE"
    MATERIAL_SPEC = "MATERIAL_SPEC"
    MEASUREMENT = "MEASUREMENT"
    PAYMENT = "PAYMENT"
    TABLE = "TABLE"
    REFERENCE = "REFERENCE"
    DEFINITION = "DEFINITION"


class Chunk(BaseModel):
    """A retrieval-sized span of specification text."""
    section_number: str
    subsection_number: Optional[str] = None
    section_context: str
    content: str
    chunk_type: ChunkType
    chunk_index: int
    token_count: int
    page_number: Optional[int] = None
    pay_item_codes: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)


class ChunkWithEmbedding(Chunk):
    """Chunk plus its vector; the model name travels with the vector."""
    embedding: List[float]
    embed_model: str
    vector_dim: int


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChunkMatch(BaseModel):
    """A similarity search hit."""
    chunk_id: str
    section_id: Optional[str] = None
    section_number: Optional[str] = None
    section_title: Optional[str] = None
    subsection_number: Optional[str] = None
    chunk_type: Optional[str] = None
    content: str
    section_context: str = ""
    similarity: float
    page_number: Optional[int] = None
