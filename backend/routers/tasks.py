"""
Kanban board endpoints.

Within a (project, column) the non-archived tasks always hold positions
0..n-1. Every handler that changes membership of a column renumbers the
affected columns before committing.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import schemas
from board import move_between, renumber, reorder
from database import get_db
from models import (
    ActivityType,
    NotificationType,
    Project,
    ProjectMember,
    ProjectRole,
    Task,
    TaskColumn,
    TaskComment,
    User,
    task_assignees,
)
from auth.dependencies import get_current_user
from auth.permissions import require_project_permission, require_task_access
from realtime.events import EventPublisher, SocketEvent, get_publisher
from services.activity import record_activity
from services.notifications import notify_many
from time_utils import is_overdue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

COLUMN_LABELS = {
    TaskColumn.todo: "To Do",
    TaskColumn.doing: "Doing",
    TaskColumn.done: "Done",
}


def _column_tasks(db: Session, project_id: int, column: TaskColumn, exclude_id: Optional[int] = None) -> List[Task]:
    query = db.query(Task).filter(
        Task.project_id == project_id,
        Task.column == column,
        Task.is_archived == False,  # noqa: E712
    )
    if exclude_id is not None:
        query = query.filter(Task.id != exclude_id)
    return query.order_by(Task.position, Task.id).all()


def _check_doing_limit(db: Session, project: Project, exclude_id: Optional[int] = None) -> None:
    """Raise 400 when one more task would overflow the Doing column."""
    count = len(_column_tasks(db, project.id, TaskColumn.doing, exclude_id=exclude_id))
    if count >= project.doing_column_limit:
        logger.info(f"Doing column limit hit in project {project.id} ({count}/{project.doing_column_limit})")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Doing column limit reached ({project.doing_column_limit} tasks)",
        )


def _resolve_assignees(db: Session, project: Project, user_ids: List[int]) -> List[User]:
    wanted = list(dict.fromkeys(user_ids))
    if not wanted:
        return []
    non_members = set(wanted) - set(project.member_ids)
    if non_members:
        logger.info(f"Rejected assignees {sorted(non_members)}: not members of project {project.id}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Assignees must be members of the project"
        )
    return db.query(User).filter(User.id.in_(wanted)).all()


def _task_payload(task: Task) -> dict:
    return schemas.TaskResponse.model_validate(task).model_dump(mode="json")


def _notify_assigned(db, project, task, user_ids, actor, publisher) -> None:
    notify_many(
        db,
        user_ids,
        NotificationType.task_assigned,
        "Task Assigned",
        f'You have been assigned to task "{task.title}" in "{project.name}"',
        publisher=publisher,
        exclude=[actor.id],
        project_id=project.id,
        data={"task_id": task.id},
    )


def _notify_moved(db, project, task, actor, publisher) -> None:
    notify_many(
        db,
        project.member_ids,
        NotificationType.task_moved,
        "Task Moved",
        f'Task "{task.title}" has been moved to {COLUMN_LABELS[task.column]} in "{project.name}"',
        publisher=publisher,
        exclude=[actor.id],
        project_id=project.id,
        data={"task_id": task.id, "column": task.column.value},
    )


def _publish_board_event(publisher: EventPublisher, project: Project, event: SocketEvent, body: dict) -> None:
    publisher.to_project_members(project.id, project.member_ids, event, {"project_id": project.id, **body})


# ============== Board ==============

@router.get("/dashboard", response_model=List[schemas.DashboardTask])
def get_dashboard_tasks(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Open tasks assigned to the caller across their active projects, soonest due first."""
    member_project_ids = db.query(ProjectMember.project_id).filter(ProjectMember.user_id == current_user.id)
    tasks = (
        db.query(Task)
        .join(task_assignees, task_assignees.c.task_id == Task.id)
        .join(Project, Project.id == Task.project_id)
        .filter(
            task_assignees.c.user_id == current_user.id,
            Task.column != TaskColumn.done,
            Task.is_archived == False,  # noqa: E712
            Project.is_archived == False,  # noqa: E712
            Project.id.in_(member_project_ids),
        )
        .order_by(Task.due_date.is_(None), Task.due_date, Task.id)
        .all()
    )
    logger.debug(f"Dashboard for user {current_user.id}: {len(tasks)} open tasks")
    return [
        schemas.DashboardTask(
            **_task_payload(task),
            project_name=task.project.name,
            is_overdue=is_overdue(task.due_date, task.column.value),
        )
        for task in tasks
    ]


@router.get("/project/{project_id}", response_model=schemas.BoardResponse)
def get_board(project_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    return {column.value: _column_tasks(db, project_id, column) for column in TaskColumn}


@router.post("/project/{project_id}", response_model=schemas.TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    project_id: int,
    payload: schemas.TaskCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Create a task at the end of its column."""
    project = require_project_permission(current_user, project_id, ProjectRole.editor, db)

    if payload.column == TaskColumn.doing:
        _check_doing_limit(db, project)

    assignees = _resolve_assignees(db, project, payload.assignees)
    task = Task(
        title=payload.title,
        description=payload.description,
        project_id=project.id,
        column=payload.column,
        position=len(_column_tasks(db, project.id, payload.column)),
        priority=payload.priority,
        created_by_id=current_user.id,
        due_date=payload.due_date,
        tags=list(payload.tags),
    )
    task.assignees = assignees
    db.add(task)
    db.flush()

    _notify_assigned(db, project, task, [user.id for user in assignees], current_user, publisher)
    notify_many(
        db,
        project.member_ids,
        NotificationType.task_created,
        "New Task Created",
        f'A new task "{task.title}" has been created in "{project.name}"',
        publisher=publisher,
        exclude=[current_user.id],
        project_id=project.id,
        data={"task_id": task.id},
    )
    record_activity(
        db, project.id, current_user.id, ActivityType.task_created, "created a task",
        target_title=task.title, target_id=task.id,
    )
    db.commit()
    db.refresh(task)

    _publish_board_event(publisher, project, SocketEvent.task_created, {"task": _task_payload(task)})
    logger.info(f"Task {task.id} created in project {project.id} ({task.column.value}@{task.position})")
    return task


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(task_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    task, _ = require_task_access(current_user, task_id, ProjectRole.viewer, db)
    return task


@router.put("/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: int,
    payload: schemas.TaskUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Partial update. Only fields present in the body change; an explicit null
    due_date clears it. A column change appends the task to the destination.
    """
    task, project = require_task_access(current_user, task_id, ProjectRole.editor, db)
    updates = payload.model_dump(exclude_unset=True)

    if updates.get("title") is not None:
        task.title = updates["title"]
    if "description" in updates:
        task.description = updates["description"]
    if updates.get("priority") is not None:
        task.priority = updates["priority"]
    if "due_date" in updates:
        task.due_date = updates["due_date"]
    if updates.get("tags") is not None:
        task.tags = list(updates["tags"])

    if updates.get("assignees") is not None:
        previous = {user.id for user in task.assignees}
        task.assignees = _resolve_assignees(db, project, updates["assignees"])
        added = [user.id for user in task.assignees if user.id not in previous]
        _notify_assigned(db, project, task, added, current_user, publisher)

    new_column = updates.get("column")
    column_changed = new_column is not None and new_column != task.column
    if column_changed:
        if task.is_archived:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Archived tasks cannot be moved")
        if new_column == TaskColumn.doing:
            _check_doing_limit(db, project, exclude_id=task.id)
        old_column = task.column
        destination = _column_tasks(db, project.id, new_column)
        task.column = new_column
        task.position = len(destination)
        renumber(_column_tasks(db, project.id, old_column, exclude_id=task.id))
        _notify_moved(db, project, task, current_user, publisher)

    record_activity(
        db, project.id, current_user.id, ActivityType.task_updated, "updated a task",
        target_title=task.title, target_id=task.id,
        metadata={"fields": sorted(updates.keys())},
    )
    db.commit()
    db.refresh(task)

    body = {"task": _task_payload(task)}
    _publish_board_event(publisher, project, SocketEvent.task_updated, body)
    if column_changed:
        _publish_board_event(publisher, project, SocketEvent.task_moved, body)
    logger.info(f"Task {task.id} updated: {sorted(updates.keys())}")
    return task


@router.put("/{task_id}/move", response_model=schemas.TaskResponse)
def move_task(
    task_id: int,
    payload: schemas.TaskMove,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Drag-and-drop: place the task at `position` in `column` (default: the end)."""
    task, project = require_task_access(current_user, task_id, ProjectRole.editor, db)
    if task.is_archived:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Archived tasks cannot be moved")

    source = _column_tasks(db, project.id, task.column)
    start = source.index(task)

    if payload.column == task.column:
        renumber(reorder(source, start, len(source) - 1 if payload.position is None else payload.position))
        column_changed = False
    else:
        if payload.column == TaskColumn.doing:
            _check_doing_limit(db, project, exclude_id=task.id)
        destination = _column_tasks(db, project.id, payload.column)
        new_source, new_destination = move_between(source, destination, start, payload.position)
        task.column = payload.column
        renumber(new_source)
        renumber(new_destination)
        column_changed = True
        _notify_moved(db, project, task, current_user, publisher)

    db.commit()
    db.refresh(task)

    _publish_board_event(publisher, project, SocketEvent.task_moved, {"task": _task_payload(task)})
    logger.info(f"Task {task.id} moved to {task.column.value}@{task.position} (column changed: {column_changed})")
    return task


@router.put("/{task_id}/reorder", response_model=schemas.TaskResponse)
def reorder_task(
    task_id: int,
    payload: schemas.TaskReorder,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Move a task within its column from `start_index` to `finish_index`.

    `start_index` must match the task's current position; otherwise the client's
    board is stale and the request is rejected with 409 so it can roll back.
    """
    task, project = require_task_access(current_user, task_id, ProjectRole.editor, db)

    if payload.column != task.column:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Task is not in the {payload.column.value} column",
        )

    siblings = _column_tasks(db, project.id, task.column)
    if task not in siblings:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Archived tasks cannot be moved")

    current_index = siblings.index(task)
    if payload.start_index != current_index:
        logger.info(
            f"Stale reorder for task {task.id}: client start {payload.start_index}, server index {current_index}"
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Board is out of date. Refresh and try again.",
        )

    renumber(reorder(siblings, current_index, payload.finish_index))
    db.commit()
    db.refresh(task)

    _publish_board_event(publisher, project, SocketEvent.task_moved, {"task": _task_payload(task)})
    logger.debug(f"Task {task.id} reordered {current_index} -> {task.position} in {task.column.value}")
    return task


@router.post("/{task_id}/comments", response_model=schemas.CommentResponse, status_code=status.HTTP_201_CREATED)
def add_comment(
    task_id: int,
    payload: schemas.CommentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    task, project = require_task_access(current_user, task_id, ProjectRole.viewer, db)

    comment = TaskComment(task_id=task.id, user_id=current_user.id, content=payload.content)
    db.add(comment)
    db.commit()
    db.refresh(comment)

    comment_body = schemas.CommentResponse.model_validate(comment).model_dump(mode="json")
    _publish_board_event(
        publisher, project, SocketEvent.task_comment_added, {"task_id": task.id, "comment": comment_body}
    )
    logger.debug(f"Comment {comment.id} added to task {task.id} by user {current_user.id}")
    return comment


@router.put("/{task_id}/archive", response_model=schemas.TaskResponse)
def archive_task(
    task_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    task, project = require_task_access(current_user, task_id, ProjectRole.editor, db)
    if task.is_archived:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Task is already archived")

    task.is_archived = True
    renumber(_column_tasks(db, project.id, task.column, exclude_id=task.id))
    db.commit()
    db.refresh(task)

    _publish_board_event(publisher, project, SocketEvent.task_updated, {"task": _task_payload(task)})
    logger.info(f"Task {task.id} archived in project {project.id}")
    return task


@router.delete("/{task_id}")
def delete_task(
    task_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    task, project = require_task_access(current_user, task_id, ProjectRole.admin, db)
    column, title = task.column, task.title

    db.delete(task)
    db.flush()
    renumber(_column_tasks(db, project.id, column))
    record_activity(
        db, project.id, current_user.id, ActivityType.task_deleted, "deleted a task",
        target_title=title, target_id=task_id,
    )
    db.commit()

    _publish_board_event(publisher, project, SocketEvent.task_deleted, {"task_id": task_id, "column": column.value})
    logger.info(f"Task {task_id} deleted from project {project.id} by user {current_user.id}")
    return {"message": "Task deleted successfully"}
