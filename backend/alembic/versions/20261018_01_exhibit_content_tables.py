"""exhibit content, publication flags, and audit tables"""

from alembic import op
import sqlalchemy as sa
from typing import Sequence, Union

revision: str = '20261018_01'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _state_columns() -> list[sa.Column]:
    return [
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('locked_by_user', sa.String(), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
    ]


def _item_columns() -> list[sa.Column]:
    return [
        sa.Column('title', sa.Text()),
        sa.Column('caption', sa.Text()),
        sa.Column('description', sa.Text()),
        sa.Column('text', sa.Text()),
        sa.Column('date', sa.String()),
        sa.Column('item_type', sa.String(), nullable=False, server_default='image'),
        sa.Column('media', sa.String()),
        sa.Column('thumbnail', sa.String()),
        sa.Column('url', sa.String()),
        sa.Column('layout', sa.String(), server_default='media_top'),
        sa.Column('media_width', sa.Integer(), server_default='50'),
        sa.Column('wrap_text', sa.Boolean(), server_default=sa.true()),
        sa.Column('template', sa.String()),
        sa.Column('styles', sa.JSON(), nullable=True),
    ]


def _member_of(table: str, column: str = 'is_member_of_exhibit') -> sa.Column:
    return sa.Column(column, sa.UUID(as_uuid=True), sa.ForeignKey(f'{table}.id'), nullable=False)


def upgrade() -> None:
    op.create_table(
        'exhibits',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        sa.Column('type', sa.String(), nullable=False, server_default='exhibit'),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('subtitle', sa.Text()),
        sa.Column('banner_template', sa.String()),
        sa.Column('about_the_curators', sa.Text()),
        sa.Column('alert_text', sa.Text()),
        sa.Column('hero_image', sa.String()),
        sa.Column('thumbnail', sa.String()),
        sa.Column('description', sa.Text()),
        sa.Column('page_layout', sa.String(), server_default='top_nav'),
        sa.Column('exhibit_template', sa.String(), server_default='vertical_scroll'),
        sa.Column('styles', sa.JSON(), nullable=True),
        sa.Column('is_featured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_student_curated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_preview', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_published_at', sa.DateTime(), nullable=True),
        *_state_columns(),
    )
    op.create_table(
        'exhibit_headings',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        _member_of('exhibits'),
        sa.Column('type', sa.String(), nullable=False, server_default='heading'),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('subtext', sa.Text()),
        sa.Column('styles', sa.JSON(), nullable=True),
        *_state_columns(),
    )
    op.create_table(
        'exhibit_items',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        _member_of('exhibits'),
        sa.Column('type', sa.String(), nullable=False, server_default='item'),
        sa.Column('columns', sa.Integer()),
        *_item_columns(),
        *_state_columns(),
    )
    op.create_table(
        'exhibit_grids',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        _member_of('exhibits'),
        sa.Column('type', sa.String(), nullable=False, server_default='grid'),
        sa.Column('title', sa.Text()),
        sa.Column('text', sa.Text()),
        sa.Column('columns', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('styles', sa.JSON(), nullable=True),
        *_state_columns(),
    )
    op.create_table(
        'exhibit_grid_items',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        _member_of('exhibit_grids', 'is_member_of_grid'),
        _member_of('exhibits'),
        sa.Column('type', sa.String(), nullable=False, server_default='griditem'),
        *_item_columns(),
        *_state_columns(),
    )
    op.create_table(
        'exhibit_timelines',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        _member_of('exhibits'),
        sa.Column('type', sa.String(), nullable=False, server_default='vertical_timeline'),
        sa.Column('title', sa.Text()),
        sa.Column('text', sa.Text()),
        sa.Column('description', sa.Text()),
        sa.Column('styles', sa.JSON(), nullable=True),
        *_state_columns(),
    )
    op.create_table(
        'exhibit_timeline_items',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        _member_of('exhibit_timelines', 'is_member_of_timeline'),
        _member_of('exhibits'),
        sa.Column('type', sa.String(), nullable=False, server_default='timelineitem'),
        *_item_columns(),
        *_state_columns(),
    )
    op.create_table(
        'exhibit_audit_logs',
        sa.Column('id', sa.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('target_type', sa.String()),
        sa.Column('target_id', sa.UUID(as_uuid=True)),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    for table in ('exhibit_headings', 'exhibit_items', 'exhibit_grids', 'exhibit_timelines'):
        op.create_index(f'ix_{table}_is_member_of_exhibit', table, ['is_member_of_exhibit'])
    op.create_index('ix_exhibit_grid_items_is_member_of_grid', 'exhibit_grid_items', ['is_member_of_grid'])
    op.create_index('ix_exhibit_grid_items_is_member_of_exhibit', 'exhibit_grid_items', ['is_member_of_exhibit'])
    op.create_index(
        'ix_exhibit_timeline_items_is_member_of_timeline', 'exhibit_timeline_items', ['is_member_of_timeline']
    )
    op.create_index(
        'ix_exhibit_timeline_items_is_member_of_exhibit', 'exhibit_timeline_items', ['is_member_of_exhibit']
    )
    op.create_index('ix_exhibit_audit_logs_target', 'exhibit_audit_logs', ['target_type', 'target_id'])


def downgrade() -> None:
    op.drop_index('ix_exhibit_audit_logs_target', table_name='exhibit_audit_logs')
    op.drop_table('exhibit_audit_logs')
    op.drop_table('exhibit_timeline_items')
    op.drop_table('exhibit_timelines')
    op.drop_table('exhibit_grid_items')
    op.drop_table('exhibit_grids')
    op.drop_table('exhibit_items')
    op.drop_table('exhibit_headings')
    op.drop_table('exhibits')
