import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStateMixin:
    """Columns shared by every exhibit content table."""

    # purpose: keep publish, lock, order, and soft-delete columns identical across kinds
    # status: pilot
    order = Column(Integer, default=0, nullable=False)
    is_published = Column(Boolean, default=False, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)
    locked_by_user = Column(String, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created = Column(DateTime, default=utcnow, nullable=False)
    updated = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)


class ItemContentMixin:
    """Descriptive columns for item-like records (items, grid items, timeline items)."""

    title = Column(Text)
    caption = Column(Text)
    description = Column(Text)
    text = Column(Text)
    date = Column(String)
    item_type = Column(String, default="image", nullable=False)
    media = Column(String)
    thumbnail = Column(String)
    url = Column(String)
    layout = Column(String, default="media_top")
    media_width = Column(Integer, default=50)
    wrap_text = Column(Boolean, default=True)
    template = Column(String)
    styles = Column(JSON, default=dict)


class Exhibit(RecordStateMixin, Base):
    __tablename__ = "exhibits"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String, default="exhibit", nullable=False)
    title = Column(Text, nullable=False)
    subtitle = Column(Text)
    banner_template = Column(String)
    about_the_curators = Column(Text)
    alert_text = Column(Text)
    hero_image = Column(String)
    thumbnail = Column(String)
    description = Column(Text)
    page_layout = Column(String, default="top_nav")
    exhibit_template = Column(String, default="vertical_scroll")
    styles = Column(JSON, default=dict)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_student_curated = Column(Boolean, default=False, nullable=False)
    is_preview = Column(Boolean, default=False, nullable=False)
    last_published_at = Column(DateTime, nullable=True)


class Heading(RecordStateMixin, Base):
    __tablename__ = "exhibit_headings"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_member_of_exhibit = Column(
        UUID(as_uuid=True), ForeignKey("exhibits.id"), nullable=False, index=True
    )
    type = Column(String, default="heading", nullable=False)
    text = Column(Text, nullable=False)
    subtext = Column(Text)
    styles = Column(JSON, default=dict)


class Item(RecordStateMixin, ItemContentMixin, Base):
    __tablename__ = "exhibit_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_member_of_exhibit = Column(
        UUID(as_uuid=True), ForeignKey("exhibits.id"), nullable=False, index=True
    )
    type = Column(String, default="item", nullable=False)
    columns = Column(Integer)


class Grid(RecordStateMixin, Base):
    __tablename__ = "exhibit_grids"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_member_of_exhibit = Column(
        UUID(as_uuid=True), ForeignKey("exhibits.id"), nullable=False, index=True
    )
    type = Column(String, default="grid", nullable=False)
    title = Column(Text)
    text = Column(Text)
    columns = Column(Integer, default=4, nullable=False)
    styles = Column(JSON, default=dict)


class GridItem(RecordStateMixin, ItemContentMixin, Base):
    __tablename__ = "exhibit_grid_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_member_of_grid = Column(
        UUID(as_uuid=True), ForeignKey("exhibit_grids.id"), nullable=False, index=True
    )
    is_member_of_exhibit = Column(
        UUID(as_uuid=True), ForeignKey("exhibits.id"), nullable=False, index=True
    )
    type = Column(String, default="griditem", nullable=False)


class Timeline(RecordStateMixin, Base):
    __tablename__ = "exhibit_timelines"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_member_of_exhibit = Column(
        UUID(as_uuid=True), ForeignKey("exhibits.id"), nullable=False, index=True
    )
    type = Column(String, default="vertical_timeline", nullable=False)
    title = Column(Text)
    text = Column(Text)
    description = Column(Text)
    styles = Column(JSON, default=dict)


class TimelineItem(RecordStateMixin, ItemContentMixin, Base):
    __tablename__ = "exhibit_timeline_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_member_of_timeline = Column(
        UUID(as_uuid=True), ForeignKey("exhibit_timelines.id"), nullable=False, index=True
    )
    is_member_of_exhibit = Column(
        UUID(as_uuid=True), ForeignKey("exhibits.id"), nullable=False, index=True
    )
    type = Column(String, default="timelineitem", nullable=False)


class AuditLog(Base):
    __tablename__ = "exhibit_audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (sa.Index("ix_exhibit_audit_logs_target", "target_type", "target_id"),)
