"""Add watermarks, usage_counters and media_jobs tables

Revision ID: 001_watermark_tables
Revises: 
Create Date: 2026-10-19

- watermarks: active watermark per chat, with its generation
- usage_counters: delivered media per chat
- media_jobs: terminal outcome of each pipeline run
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_watermark_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'watermarks',
        sa.Column('chat_id', sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column('file_name', sa.String(), nullable=True),
        sa.Column('content_sha256', sa.String(), nullable=True),
        sa.Column('size_bytes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('generation', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'usage_counters',
        sa.Column('chat_id', sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'media_jobs',
        sa.Column('request_id', sa.String(), primary_key=True),
        sa.Column('chat_id', sa.BigInteger(), nullable=False, index=True),
        sa.Column('media_kind', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('failed_stage', sa.String(), nullable=True),
        sa.Column('error_type', sa.String(), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('watermark_generation', sa.Integer(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('media_jobs')
    op.drop_table('usage_counters')
    op.drop_table('watermarks')
