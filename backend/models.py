from sqlalchemy import (
    Column, Integer, String, Text, ForeignKey, DateTime, Enum, Boolean, Table, UniqueConstraint, Index, JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
import enum

from database import Base
from time_utils import utc_now

# JSON everywhere, JSONB when running on PostgreSQL
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ProjectRole(str, enum.Enum):
    viewer = "viewer"
    editor = "editor"
    admin = "admin"


class InvitationStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    invalid = "invalid"


class TaskColumn(str, enum.Enum):
    todo = "todo"
    doing = "doing"
    done = "done"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class NoteType(str, enum.Enum):
    notice = "notice"
    issue = "issue"
    reminder = "reminder"
    important = "important"
    other = "other"


class FriendRequestStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class ActivityType(str, enum.Enum):
    note_created = "note_created"
    note_updated = "note_updated"
    note_deleted = "note_deleted"
    task_created = "task_created"
    task_updated = "task_updated"
    task_deleted = "task_deleted"
    member_added = "member_added"
    member_removed = "member_removed"


NOTE_ACTIVITY_TYPES = (ActivityType.note_created, ActivityType.note_updated, ActivityType.note_deleted)


class NotificationType(str, enum.Enum):
    project_invitation = "project_invitation"
    task_assigned = "task_assigned"
    task_created = "task_created"
    task_moved = "task_moved"
    note_created = "note_created"
    note_tagged = "note_tagged"
    member_added = "member_added"
    member_removed = "member_removed"
    role_changed = "role_changed"
    project_updated = "project_updated"
    project_name_changed = "project_name_changed"
    project_archived = "project_archived"
    project_unarchived = "project_unarchived"
    project_deleted = "project_deleted"
    friend_request = "friend_request"
    friend_accepted = "friend_accepted"
    invitation_accepted = "invitation_accepted"
    invitation_declined = "invitation_declined"


def _enum(enum_cls):
    # Stored as VARCHAR so new values need no database type migration
    return Enum(enum_cls, native_enum=False, length=30)


# ============== Association tables ==============

friendships = Table(
    "friendships",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("friend_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

task_assignees = Table(
    "task_assignees",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

note_tagged_users = Table(
    "note_tagged_users",
    Base.metadata,
    Column("note_id", Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

note_referenced_tasks = Table(
    "note_referenced_tasks",
    Base.metadata,
    Column("note_id", Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("task_id", Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
)


# ============== Users ==============

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(100), nullable=False)
    username = Column(String(30), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    profile_image = Column(String(512))
    is_active = Column(Boolean, nullable=False, default=True)
    is_online = Column(Boolean, nullable=False, default=False)
    last_seen = Column(DateTime(timezone=True))
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utc_now)

    # Relationships
    friends = relationship(
        "User",
        secondary=friendships,
        primaryjoin=id == friendships.c.user_id,
        secondaryjoin=id == friendships.c.friend_id,
        order_by="User.full_name",
    )
    memberships = relationship("ProjectMember", back_populates="user", cascade="all, delete-orphan")
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_jti = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    user = relationship("User", back_populates="refresh_tokens")


class FriendRequest(Base):
    __tablename__ = "friend_requests"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(_enum(FriendRequestStatus), nullable=False, default=FriendRequestStatus.pending)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    responded_at = Column(DateTime(timezone=True))

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])


# ============== Projects ==============

class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500))
    markdown_content = Column(Text, nullable=False, default="")
    creator_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    doing_column_limit = Column(Integer, nullable=False, default=5)
    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime(timezone=True))
    archived_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    creator = relationship("User", foreign_keys=[creator_id])
    archived_by = relationship("User", foreign_keys=[archived_by_id])
    members = relationship(
        "ProjectMember", back_populates="project", cascade="all, delete-orphan", order_by="ProjectMember.id"
    )
    invitations = relationship(
        "ProjectInvitation", back_populates="project", cascade="all, delete-orphan", order_by="ProjectInvitation.id"
    )
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")
    notes = relationship("Note", back_populates="project", cascade="all, delete-orphan")
    bookmarks = relationship("Bookmark", back_populates="project", cascade="all, delete-orphan")
    activities = relationship("Activity", back_populates="project", cascade="all, delete-orphan")

    @property
    def member_ids(self):
        return [member.user_id for member in self.members]


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(_enum(ProjectRole), nullable=False, default=ProjectRole.viewer)
    joined_at = Column(DateTime(timezone=True), default=utc_now)

    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="unique_project_member"),
    )


class ProjectInvitation(Base):
    __tablename__ = "project_invitations"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    invited_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    role = Column(_enum(ProjectRole), nullable=False, default=ProjectRole.viewer)
    status = Column(_enum(InvitationStatus), nullable=False, default=InvitationStatus.pending)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    project = relationship("Project", back_populates="invitations")
    user = relationship("User", foreign_keys=[user_id])
    invited_by = relationship("User", foreign_keys=[invited_by_id])


# ============== Tasks ==============

class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(String(1000))
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    column = Column(_enum(TaskColumn), nullable=False, default=TaskColumn.todo)
    position = Column(Integer, nullable=False, default=0)
    priority = Column(_enum(TaskPriority), nullable=False, default=TaskPriority.medium)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    due_date = Column(DateTime(timezone=True))
    tags = Column(JSONType, default=list)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    created_by = relationship("User", foreign_keys=[created_by_id])
    assignees = relationship("User", secondary=task_assignees, order_by="User.full_name")
    comments = relationship(
        "TaskComment", back_populates="task", cascade="all, delete-orphan", order_by="TaskComment.id"
    )
    referencing_notes = relationship("Note", secondary=note_referenced_tasks, back_populates="referenced_tasks")

    __table_args__ = (
        Index("ix_tasks_project_column", "project_id", "column"),
    )


class TaskComment(Base):
    __tablename__ = "task_comments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    content = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    task = relationship("Task", back_populates="comments")
    user = relationship("User")


# ============== Notes ==============

class Note(Base):
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    type = Column(_enum(NoteType), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    is_archived = Column(Boolean, nullable=False, default=False)
    is_pinned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    project = relationship("Project", back_populates="notes")
    created_by = relationship("User", foreign_keys=[created_by_id])
    tagged_users = relationship("User", secondary=note_tagged_users, order_by="User.full_name")
    referenced_tasks = relationship(
        "Task", secondary=note_referenced_tasks, back_populates="referencing_notes", order_by="Task.id"
    )
    bookmarks = relationship("Bookmark", back_populates="note", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_notes_project_archived", "project_id", "is_archived"),
    )


class Bookmark(Base):
    __tablename__ = "bookmarks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    note_id = Column(Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    note = relationship("Note", back_populates="bookmarks")
    project = relationship("Project", back_populates="bookmarks")

    __table_args__ = (
        UniqueConstraint("user_id", "note_id", name="unique_user_bookmark"),
        Index("ix_bookmarks_user_project", "user_id", "project_id"),
    )


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    type = Column(_enum(ActivityType), nullable=False)
    action = Column(String(255), nullable=False)
    # Nullable: the target may already be deleted; target_title keeps it displayable
    target_id = Column(Integer)
    target_title = Column(String(200), nullable=False)
    activity_metadata = Column("metadata", JSONType)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    project = relationship("Project", back_populates="activities")
    user = relationship("User")

    __table_args__ = (
        Index("ix_activities_project_created", "project_id", "created_at"),
    )


# ============== Notifications ==============

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(_enum(NotificationType), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    # Plain columns (no FK) so notifications outlive deleted projects
    project_id = Column(Integer, index=True)
    invitation_id = Column(Integer, index=True)
    data = Column(JSONType, default=dict)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_created", "created_at"),
    )
