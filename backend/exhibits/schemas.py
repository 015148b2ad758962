from datetime import datetime
from typing import Optional, Any, Dict, Literal, List
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID


class ExhibitCreate(BaseModel):
    title: str
    subtitle: Optional[str] = None
    banner_template: Optional[str] = None
    about_the_curators: Optional[str] = None
    alert_text: Optional[str] = None
    hero_image: Optional[str] = None
    thumbnail: Optional[str] = None
    description: Optional[str] = None
    page_layout: Optional[str] = "top_nav"
    exhibit_template: Optional[str] = "vertical_scroll"
    styles: Dict[str, Any] = Field(default_factory=dict)
    is_featured: bool = False
    is_student_curated: bool = False
    order: Optional[int] = None
    created_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class ExhibitUpdate(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    banner_template: Optional[str] = None
    about_the_curators: Optional[str] = None
    alert_text: Optional[str] = None
    hero_image: Optional[str] = None
    thumbnail: Optional[str] = None
    description: Optional[str] = None
    page_layout: Optional[str] = None
    exhibit_template: Optional[str] = None
    styles: Optional[Dict[str, Any]] = None
    is_featured: Optional[bool] = None
    is_student_curated: Optional[bool] = None
    updated_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class HeadingCreate(BaseModel):
    is_member_of_exhibit: UUID
    text: str
    subtext: Optional[str] = None
    styles: Dict[str, Any] = Field(default_factory=dict)
    order: Optional[int] = None
    created_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class HeadingUpdate(BaseModel):
    text: Optional[str] = None
    subtext: Optional[str] = None
    styles: Optional[Dict[str, Any]] = None
    updated_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class ItemContent(BaseModel):
    title: Optional[str] = None
    caption: Optional[str] = None
    description: Optional[str] = None
    text: Optional[str] = None
    date: Optional[str] = None
    item_type: str = "image"
    media: Optional[str] = None
    thumbnail: Optional[str] = None
    url: Optional[str] = None
    layout: Optional[str] = "media_top"
    media_width: Optional[int] = 50
    wrap_text: Optional[bool] = True
    template: Optional[str] = None
    styles: Dict[str, Any] = Field(default_factory=dict)
    order: Optional[int] = None
    created_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class ItemCreate(ItemContent):
    is_member_of_exhibit: UUID
    columns: Optional[int] = None


class GridItemCreate(ItemContent):
    is_member_of_grid: UUID
    is_member_of_exhibit: UUID


class TimelineItemCreate(ItemContent):
    is_member_of_timeline: UUID
    is_member_of_exhibit: UUID


class ItemUpdate(BaseModel):
    title: Optional[str] = None
    caption: Optional[str] = None
    description: Optional[str] = None
    text: Optional[str] = None
    date: Optional[str] = None
    item_type: Optional[str] = None
    media: Optional[str] = None
    thumbnail: Optional[str] = None
    url: Optional[str] = None
    layout: Optional[str] = None
    media_width: Optional[int] = None
    wrap_text: Optional[bool] = None
    template: Optional[str] = None
    styles: Optional[Dict[str, Any]] = None
    columns: Optional[int] = None
    updated_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class GridCreate(BaseModel):
    is_member_of_exhibit: UUID
    title: Optional[str] = None
    text: Optional[str] = None
    columns: int = 4
    styles: Dict[str, Any] = Field(default_factory=dict)
    order: Optional[int] = None
    created_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class GridUpdate(BaseModel):
    title: Optional[str] = None
    text: Optional[str] = None
    columns: Optional[int] = None
    styles: Optional[Dict[str, Any]] = None
    updated_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class TimelineCreate(BaseModel):
    is_member_of_exhibit: UUID
    title: Optional[str] = None
    text: Optional[str] = None
    description: Optional[str] = None
    styles: Dict[str, Any] = Field(default_factory=dict)
    order: Optional[int] = None
    created_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class TimelineUpdate(BaseModel):
    title: Optional[str] = None
    text: Optional[str] = None
    description: Optional[str] = None
    styles: Optional[Dict[str, Any]] = None
    updated_by: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class ReorderEntry(BaseModel):
    kind: str
    parent_id: str
    id: str
    order: int = Field(ge=0)


class ReorderReport(BaseModel):
    updated: List[str] = Field(default_factory=list)
    failed: List[Dict[str, Any]] = Field(default_factory=list)


LockState = Literal["acquired", "already_locked_by_self", "already_locked_by_other"]


class LockResult(BaseModel):
    state: LockState
    locked_by_user: Optional[str] = None
    locked_at: Optional[datetime] = None

    @property
    def granted(self) -> bool:
        return self.state != "already_locked_by_other"


OperationStatus = Literal[
    "ok",
    "no_items",
    "published",
    "locked",
    "partial_failure",
    "invalid",
    "not_found",
    "error",
]


class OperationResult(BaseModel):
    status: OperationStatus
    message: str
    data: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class AuditLogOut(BaseModel):
    id: UUID
    user_id: Optional[str] = None
    action: str
    target_type: Optional[str] = None
    target_id: Optional[UUID] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
