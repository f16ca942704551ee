"""
Test suite for the Postgres persistence adapter.

Tests identifier resolution in the record builders, parent-link resolution,
batch failure isolation and query-side helpers with a mocked connection.

System role: Verification of the persistence identifier-resolution contract
"""

from unittest.mock import MagicMock, patch

import psycopg
import pytest

from specoracle.core.exceptions import SearchError
from specoracle.core.models import ChunkType, ChunkWithEmbedding, Division, PayItem, Section, Subsection
from specoracle.core.store import (
    FULL_TEXT_LIMIT,
    PgSpecStore,
    build_chunk_records,
    build_division_records,
    build_pay_item_link_records,
    build_section_records,
    build_subsection_records,
    format_embedding_for_pg,
    resolve_parent_links,
)


def make_section(number: str, full_text: str = "text") -> Section:
    return Section(section_number=number, title="TITLE", division_number=int(number) // 100 * 100, full_text=full_text)


def make_subsection(number: str, parent: str = None) -> Subsection:
    return Subsection(
        section_number=number.split(".")[0],
        subsection_number=number,
        title="Title",
        content="content",
        hierarchy_level=len(number.split(".")) - 1,
        parent_subsection=parent,
    )


def make_embedded_chunk(section_number: str, subsection_number: str = None) -> ChunkWithEmbedding:
    return ChunkWithEmbedding(
        section_number=section_number,
        subsection_number=subsection_number,
        section_context=f"Section {section_number}",
        content="content",
        chunk_type=ChunkType.REQUIREMENT,
        chunk_index=0,
        token_count=1,
        embedding=[0.1, 0.2],
        embed_model="text-embedding-3-small",
        vector_dim=2,
    )


@pytest.fixture
def mock_connection():
    """Patch psycopg.connect; yields the cursor used inside the store."""
    with patch("specoracle.core.store.psycopg.connect") as mock_connect:
        conn = mock_connect.return_value.__enter__.return_value
        cursor = conn.cursor.return_value.__enter__.return_value
        yield cursor


class TestRecordBuilders:
    """Test suite for identifier resolution."""

    def test_division_records_should_get_ids(self) -> None:
        """Test every division gets a generated id and sort order."""
        records = build_division_records("doc-1", [Division(number=600, title="INCIDENTAL CONSTRUCTION")])

        assert records[0]["document_id"] == "doc-1"
        assert records[0]["division_number"] == 600
        assert records[0]["id"]

    def test_sections_without_division_should_be_skipped(self) -> None:
        """Test sections whose division failed to insert are dropped and counted."""
        records, skipped = build_section_records("doc-1", {600: "div-6"}, [make_section("624"), make_section("701")])

        assert [r["section_number"] for r in records] == ["624"]
        assert records[0]["division_id"] == "div-6"
        assert skipped == 1

    def test_section_full_text_should_be_truncated(self) -> None:
        """Test oversized section text is cut to the storage limit."""
        records, _ = build_section_records("doc-1", {600: "div-6"}, [make_section("624", "x" * (FULL_TEXT_LIMIT + 10))])

        assert len(records[0]["full_text"]) == FULL_TEXT_LIMIT

    def test_subsections_without_section_should_be_skipped(self) -> None:
        """Test subsections of uninserted sections are dropped."""
        records, skipped = build_subsection_records(
            {"624": "sec-624"}, [make_subsection("624.1"), make_subsection("625.1")]
        )

        assert [r["subsection_number"] for r in records] == ["624.1"]
        assert records[0]["section_id"] == "sec-624"
        assert skipped == 1

    def test_parent_links_should_need_both_ids(self) -> None:
        """Test a parent link is only resolved when parent and child were inserted."""
        subsections = [
            make_subsection("624.6"),
            make_subsection("624.6.1", parent="624.6"),
            make_subsection("624.7.1", parent="624.7"),
        ]
        ids = {"624.6": "id-6", "624.6.1": "id-61", "624.7.1": "id-71"}

        assert resolve_parent_links(subsections, ids) == [("id-61", "id-6")]

    def test_chunks_should_never_reference_missing_sections(self) -> None:
        """Test chunks of uninserted sections are dropped; missing subsections become null."""
        chunks = [
            make_embedded_chunk("624", "624.1"),
            make_embedded_chunk("624", "624.9"),
            make_embedded_chunk("999"),
        ]

        records, skipped = build_chunk_records("doc-1", {"624": "sec-624"}, {"624.1": "sub-1"}, chunks)

        assert skipped == 1
        assert [r["section_id"] for r in records] == ["sec-624", "sec-624"]
        assert [r["subsection_id"] for r in records] == ["sub-1", None]
        assert records[0]["embedding"] == "[0.10000000,0.20000000]"
        assert records[0]["embed_model"] == "text-embedding-3-small"
        assert records[0]["chunk_type"] == "REQUIREMENT"

    def test_orphan_pay_items_should_be_skipped(self) -> None:
        """Test pay item links need a resolved section."""
        items = [
            PayItem(item_number="624001", description="Shotcrete", unit="Square Yard", section_number="624"),
            PayItem(item_number="999001", description="Unknown", unit="Each", section_number="999"),
        ]

        records, skipped = build_pay_item_link_records("doc-1", {"624": "sec-624"}, items)

        assert [r["item_number"] for r in records] == ["624001"]
        assert records[0]["primary_section_id"] == "sec-624"
        assert skipped == 1

    def test_embedding_literal_format(self) -> None:
        """Test the pgvector literal form."""
        assert format_embedding_for_pg([1, -0.5]) == "[1.00000000,-0.50000000]"


class TestPgSpecStore:
    """Test suite for store operations against a mocked connection."""

    def test_failed_batch_should_be_skipped(self, mock_connection: MagicMock) -> None:
        """Test one failing batch does not abort the others."""
        mock_connection.executemany.side_effect = [None, psycopg.Error("constraint violation"), None]
        store = PgSpecStore(db_url="postgresql://test", batch_size=2)
        sections = [make_section(n) for n in ("601", "602", "603", "604", "605")]

        section_ids = store.insert_sections("doc-1", {600: "div-6"}, sections)

        assert set(section_ids) == {"601", "602", "605"}
        assert mock_connection.executemany.call_count == 3

    def test_subsections_should_link_parents_after_insert(self, mock_connection: MagicMock) -> None:
        """Test parent references are updated in a second pass."""
        store = PgSpecStore(db_url="postgresql://test")
        subsections = [make_subsection("624.6"), make_subsection("624.6.1", parent="624.6")]

        subsection_ids = store.insert_subsections({"624": "sec-624"}, subsections)

        update_call = mock_connection.executemany.call_args_list[-1]
        assert "parent_subsection_id" in update_call.args[0]
        assert update_call.args[1] == [(subsection_ids["624.6"], subsection_ids["624.6.1"])]

    def test_search_should_wrap_database_errors(self, mock_connection: MagicMock) -> None:
        """Test search failures surface as SearchError."""
        mock_connection.execute.side_effect = psycopg.OperationalError("connection refused")
        store = PgSpecStore(db_url="postgresql://test")

        with pytest.raises(SearchError):
            store.search([0.1, 0.2], threshold=0.4, k=5)

    def test_search_should_pass_filters(self, mock_connection: MagicMock) -> None:
        """Test threshold, count and filters are passed to search_specs."""
        mock_connection.fetchall.return_value = [{"chunk_id": "c1", "content": "x", "similarity": 0.9}]
        store = PgSpecStore(db_url="postgresql://test")

        rows = store.search([0.1], threshold=0.4, k=3, section_ids=["s1"], pay_item_codes=["624001"])

        params = mock_connection.execute.call_args.args[1]
        assert params == ("[0.10000000]", 0.4, 3, ["s1"], ["624001"], None)
        assert rows[0]["chunk_id"] == "c1"

    def test_search_should_filter_by_embedding_model(self, mock_connection: MagicMock) -> None:
        """Test the embedding model is passed to search_specs as the last argument."""
        store = PgSpecStore(db_url="postgresql://test")

        store.search([0.1], threshold=0.4, k=3, embed_model="text-embedding-3-small")

        sql, params = mock_connection.execute.call_args.args
        assert "%s::text)" in sql
        assert params[-1] == "text-embedding-3-small"

    def test_section_ids_should_skip_query_for_empty_filter(self, mock_connection: MagicMock) -> None:
        """Test no query is issued for an empty section list."""
        store = PgSpecStore(db_url="postgresql://test")

        assert store.get_section_ids([]) == []
        mock_connection.execute.assert_not_called()
