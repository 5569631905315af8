from pydantic import BaseModel, Field, StringConstraints
from datetime import datetime
from typing import Annotated, Optional, List, Literal

from config import MAX_DOING_COLUMN_LIMIT, MIN_DOING_COLUMN_LIMIT
from models import (
    ProjectRole,
    InvitationStatus,
    TaskColumn,
    TaskPriority,
    NoteType,
    ActivityType,
    NotificationType,
    FriendRequestStatus,
)

USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"

# Surrounding whitespace is removed before length limits apply
TrimmedStr = Annotated[str, StringConstraints(strip_whitespace=True)]


class Message(BaseModel):
    message: str


# User schemas
class UserSummary(BaseModel):
    id: int
    full_name: str
    username: str
    email: str
    profile_image: Optional[str] = None

    class Config:
        from_attributes = True


class UserResponse(UserSummary):
    is_active: bool
    is_online: bool = False
    last_seen: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    full_name: Optional[TrimmedStr] = Field(None, min_length=2, max_length=100)
    username: Optional[str] = Field(None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=128)


class FriendRequestCreate(BaseModel):
    user_id: int


class FriendRequestAction(BaseModel):
    action: Literal["accept", "decline"]


class FriendRequestResponse(BaseModel):
    id: int
    sender: UserSummary
    receiver_id: int
    status: FriendRequestStatus
    created_at: datetime

    class Config:
        from_attributes = True


# Project schemas
class MemberResponse(BaseModel):
    id: int
    user: UserSummary
    role: ProjectRole
    joined_at: datetime

    class Config:
        from_attributes = True


class InvitationResponse(BaseModel):
    id: int
    project_id: int
    user: UserSummary
    invited_by: Optional[UserSummary] = None
    role: ProjectRole
    status: InvitationStatus
    created_at: datetime

    class Config:
        from_attributes = True


class ProjectCreate(BaseModel):
    name: TrimmedStr = Field(..., min_length=1, max_length=100)
    description: Optional[TrimmedStr] = Field(None, max_length=500)
    member_emails: List[str] = Field(default_factory=list)


class ProjectSettingsUpdate(BaseModel):
    name: Optional[TrimmedStr] = Field(None, min_length=1, max_length=100)
    description: Optional[TrimmedStr] = Field(None, max_length=500)
    doing_column_limit: Optional[int] = Field(None, ge=MIN_DOING_COLUMN_LIMIT, le=MAX_DOING_COLUMN_LIMIT)
    notify_name_change: bool = False


class BoardSettings(BaseModel):
    doing_limit: int = Field(..., ge=MIN_DOING_COLUMN_LIMIT, le=MAX_DOING_COLUMN_LIMIT)


class MarkdownUpdate(BaseModel):
    content: str = Field("", max_length=100_000)


class InviteRequest(BaseModel):
    # Email address or username
    email: str = Field(..., min_length=1)
    role: ProjectRole = ProjectRole.viewer


class InvitationAction(BaseModel):
    action: Literal["accept", "decline"]


class RoleUpdate(BaseModel):
    role: ProjectRole


class ArchiveRequest(BaseModel):
    notify_members: bool = True


class ProjectDeleteRequest(BaseModel):
    project_name: str
    password: str
    notify_members: bool = True


class ProjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    markdown_content: str = ""
    creator_id: Optional[int] = None
    creator: Optional[UserSummary] = None
    doing_column_limit: int
    is_archived: bool
    archived_at: Optional[datetime] = None
    archived_by: Optional[UserSummary] = None
    members: List[MemberResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProjectDetail(ProjectResponse):
    invitations: List[InvitationResponse] = []

    class Config:
        from_attributes = True


# Task schemas
class TaskLite(BaseModel):
    id: int
    title: str
    column: TaskColumn

    class Config:
        from_attributes = True


class TaskCreate(BaseModel):
    title: TrimmedStr = Field(..., min_length=1, max_length=200)
    description: Optional[TrimmedStr] = Field(None, max_length=1000)
    column: TaskColumn = TaskColumn.todo
    priority: TaskPriority = TaskPriority.medium
    assignees: List[int] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[TrimmedStr] = Field(None, min_length=1, max_length=200)
    description: Optional[TrimmedStr] = Field(None, max_length=1000)
    column: Optional[TaskColumn] = None
    priority: Optional[TaskPriority] = None
    assignees: Optional[List[int]] = None
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None


class TaskMove(BaseModel):
    column: TaskColumn
    position: Optional[int] = Field(None, ge=0)


class TaskReorder(BaseModel):
    start_index: int = Field(..., ge=0)
    finish_index: int = Field(..., ge=0)
    column: TaskColumn


class CommentCreate(BaseModel):
    content: TrimmedStr = Field(..., min_length=1, max_length=500)


class CommentResponse(BaseModel):
    id: int
    task_id: int
    user: Optional[UserSummary] = None
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    project_id: int
    column: TaskColumn
    position: int
    priority: TaskPriority
    assignees: List[UserSummary] = []
    created_by: Optional[UserSummary] = None
    due_date: Optional[datetime] = None
    tags: List[str] = []
    is_archived: bool
    comments: List[CommentResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BoardResponse(BaseModel):
    todo: List[TaskResponse] = []
    doing: List[TaskResponse] = []
    done: List[TaskResponse] = []


class DashboardTask(TaskResponse):
    project_name: str
    is_overdue: bool = False


# Note schemas
class NoteCreate(BaseModel):
    title: TrimmedStr = Field(..., min_length=1, max_length=200)
    content: TrimmedStr = Field(..., min_length=1)
    type: NoteType
    tagged_users: List[int] = Field(default_factory=list)
    referenced_tasks: List[int] = Field(default_factory=list)


class NoteUpdate(BaseModel):
    title: Optional[TrimmedStr] = Field(None, min_length=1, max_length=200)
    content: Optional[TrimmedStr] = Field(None, min_length=1)
    type: Optional[NoteType] = None
    tagged_users: Optional[List[int]] = None
    referenced_tasks: Optional[List[int]] = None


class BookmarkRequest(BaseModel):
    bookmark: bool


class NoteResponse(BaseModel):
    id: int
    title: str
    content: str
    project_id: int
    type: NoteType
    created_by: Optional[UserSummary] = None
    tagged_users: List[UserSummary] = []
    referenced_tasks: List[TaskLite] = []
    is_archived: bool
    is_pinned: bool
    is_bookmarked: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ActivityResponse(BaseModel):
    id: int
    project_id: int
    user: Optional[UserSummary] = None
    type: ActivityType
    action: str
    target_id: Optional[int] = None
    target_title: str
    metadata: Optional[dict] = Field(None, validation_alias="activity_metadata")
    created_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


# Notification schemas
class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    project_id: Optional[int] = None
    invitation_id: Optional[int] = None
    data: Optional[dict] = Field(default_factory=dict)
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationPagination(BaseModel):
    current: int
    pages: int
    total: int
    unread_count: int
    last_7_days_count: int


class NotificationList(BaseModel):
    notifications: List[NotificationResponse] = []
    pagination: NotificationPagination


class UnreadCount(BaseModel):
    unread_count: int


class HealthResponse(BaseModel):
    status: str
