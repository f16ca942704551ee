"""Specification index schema

Revision ID: 3b8e51c20d7a
Revises:
Create Date: 2026-10-19 09:42:11.604318

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b8e51c20d7a'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table('spec_documents',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('organization_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('document_type', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('version_year', sa.Integer(), nullable=False),
        sa.Column('edition', sa.Text(), nullable=True),
        sa.Column('effective_date', sa.Date(), nullable=True),
        sa.Column('processing_status', sa.Text(), server_default='PENDING', nullable=False),
        sa.Column('processing_completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('total_pages', sa.Integer(), nullable=True),
        sa.Column('total_sections', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_chunks', sa.Integer(), server_default='0', nullable=False),
        sa.Column('source_sha256', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('spec_divisions',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('document_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('division_number', sa.Integer(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['spec_documents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('spec_sections',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('document_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('division_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('section_number', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('full_text', sa.Text(), nullable=True),
        sa.Column('start_page', sa.Integer(), nullable=True),
        sa.Column('end_page', sa.Integer(), nullable=True),
        sa.Column('related_pay_items', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['spec_documents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['division_id'], ['spec_divisions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_spec_sections_number', 'spec_sections', ['section_number'])

    op.create_table('spec_subsections',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('section_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('parent_subsection_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('subsection_number', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('hierarchy_level', sa.Integer(), nullable=False),
        sa.Column('cross_references', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('page_number', sa.Integer(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['section_id'], ['spec_sections.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_subsection_id'], ['spec_subsections.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('spec_chunks',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('document_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('section_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('subsection_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('chunk_type', sa.Text(), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('content_tokens', sa.Integer(), nullable=False),
        sa.Column('section_context', sa.Text(), nullable=True),
        sa.Column('embed_model', sa.Text(), nullable=False),
        sa.Column('vector_dim', sa.Integer(), nullable=False),
        sa.Column('pay_item_codes', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('keywords', postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column('page_number', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['document_id'], ['spec_documents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['section_id'], ['spec_sections.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subsection_id'], ['spec_subsections.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.execute(f"ALTER TABLE spec_chunks ADD COLUMN embedding vector({EMBEDDING_DIMENSIONS}) NOT NULL")
    op.execute("CREATE INDEX idx_spec_chunks_embedding ON spec_chunks USING hnsw (embedding vector_cosine_ops)")
    op.execute("CREATE INDEX idx_spec_chunks_pay_items ON spec_chunks USING gin (pay_item_codes)")

    op.create_table('spec_item_links',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('document_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('item_number', sa.Text(), nullable=False),
        sa.Column('item_description', sa.Text(), nullable=True),
        sa.Column('unit', sa.Text(), nullable=True),
        sa.Column('primary_section_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.ForeignKeyConstraint(['document_id'], ['spec_documents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['primary_section_id'], ['spec_sections.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_spec_item_links_item_number', 'spec_item_links', ['item_number'])

    op.create_table('spec_query_log',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('query_text', sa.Text(), nullable=False),
        sa.Column('bid_project_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('line_item_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('result_count', sa.Integer(), nullable=False),
        sa.Column('top_chunk_ids', postgresql.ARRAY(postgresql.UUID(as_uuid=False)), nullable=True),
        sa.Column('response_text', sa.Text(), nullable=True),
        sa.Column('query_time_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.execute(f"ALTER TABLE spec_query_log ADD COLUMN query_embedding vector({EMBEDDING_DIMENSIONS})")

    op.execute(f"""
        CREATE OR REPLACE FUNCTION search_specs(
            query_embedding vector({EMBEDDING_DIMENSIONS}),
            match_threshold float,
            match_count int,
            filter_section_ids uuid[] DEFAULT NULL,
            filter_pay_items text[] DEFAULT NULL,
            filter_embed_model text DEFAULT NULL
        )
        RETURNS TABLE (
            chunk_id uuid,
            section_id uuid,
            section_number text,
            section_title text,
            subsection_number text,
            chunk_type text,
            content text,
            section_context text,
            similarity float,
            page_number int
        )
        LANGUAGE sql STABLE
        AS $$
            SELECT
                c.id,
                c.section_id,
                s.section_number,
                s.title,
                ss.subsection_number,
                c.chunk_type,
                c.content,
                c.section_context,
                1 - (c.embedding <=> query_embedding),
                c.page_number
            FROM spec_chunks c
            JOIN spec_sections s ON c.section_id = s.id
            JOIN spec_documents d ON c.document_id = d.id
            LEFT JOIN spec_subsections ss ON c.subsection_id = ss.id
            WHERE d.is_active
              AND 1 - (c.embedding <=> query_embedding) >= match_threshold
              AND (filter_section_ids IS NULL OR c.section_id = ANY(filter_section_ids))
              AND (filter_pay_items IS NULL OR c.pay_item_codes && filter_pay_items)
              AND (filter_embed_model IS NULL OR c.embed_model = filter_embed_model)
            ORDER BY c.embedding <=> query_embedding
            LIMIT match_count
        $$
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DROP FUNCTION IF EXISTS search_specs(vector, float, int, uuid[], text[], text)")
    op.drop_table('spec_query_log')
    op.drop_table('spec_item_links')
    op.drop_table('spec_chunks')
    op.drop_table('spec_subsections')
    op.drop_table('spec_sections')
    op.drop_table('spec_divisions')
    op.drop_table('spec_documents')
