"""
Project-level permission checking utilities.

Every project action is gated by the caller's membership role in that project:

    viewer (1) < editor (2) < admin (3)

Non-members get 404 rather than 403 so project existence does not leak.
"""

import logging
from typing import List, Optional, Tuple, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session
from fastapi import HTTPException, status

from models import User, Project, ProjectMember, ProjectRole, Task

logger = logging.getLogger(__name__)

ROLE_HIERARCHY = {
    ProjectRole.viewer.value: 1,
    ProjectRole.editor.value: 2,
    ProjectRole.admin.value: 3,
}

# Minimum role per action; shared with the client so the UI hides what the API refuses
ACTION_ROLES = {
    # Project management
    "edit_project_info": ProjectRole.editor,
    "archive_project": ProjectRole.admin,
    "delete_project": ProjectRole.admin,
    "manage_settings": ProjectRole.admin,
    # Team management
    "add_members": ProjectRole.admin,
    "remove_members": ProjectRole.admin,
    "assign_roles": ProjectRole.admin,
    "view_team": ProjectRole.viewer,
    # Task management
    "create_tasks": ProjectRole.editor,
    "edit_tasks": ProjectRole.editor,
    "delete_tasks": ProjectRole.admin,
    "move_tasks": ProjectRole.editor,
    "view_tasks": ProjectRole.viewer,
    "comment_tasks": ProjectRole.viewer,
    # Notes
    "create_notes": ProjectRole.editor,
    "edit_notes": ProjectRole.editor,
    "delete_notes": ProjectRole.admin,
    "view_notes": ProjectRole.viewer,
}

RoleLike = Union[ProjectRole, str]


def _role_value(role: Optional[RoleLike]) -> Optional[str]:
    if role is None:
        return None
    return role.value if isinstance(role, ProjectRole) else str(role)


def has_minimum_role(role: Optional[RoleLike], required_role: RoleLike) -> bool:
    """True when `role` is at least `required_role`; unknown or missing roles never pass."""
    level = ROLE_HIERARCHY.get(_role_value(role), 0)
    return level > 0 and level >= ROLE_HIERARCHY[_role_value(required_role)]


def can(role: Optional[RoleLike], action: str) -> bool:
    """
    Check whether a project role may perform a named action.

    Example:
        >>> can("editor", "create_tasks")
        True
        >>> can("editor", "delete_tasks")
        False
    """
    required = ACTION_ROLES.get(action)
    if required is None:
        logger.warning(f"Unknown permission action requested: {action}")
        return False
    return has_minimum_role(role, required)


def get_member_role(user: User, project_id: int, db: Session) -> Optional[ProjectRole]:
    """Return the user's role in the project, or None when not a member."""
    membership = (
        db.query(ProjectMember)
        .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user.id)
        .first()
    )
    return membership.role if membership else None


def check_project_permission(
    user: User, project_id: int, required_role: RoleLike, db: Session
) -> bool:
    """
    Check if a user has at least the required role for a project.

    Example:
        >>> if not check_project_permission(user, 42, "editor", db):
        ...     raise HTTPException(status_code=403, detail="Access denied")
    """
    role = get_member_role(user, project_id, db)
    if role is None:
        logger.info(f"User {user.id} has no membership in project {project_id}")
        return False

    has_permission = has_minimum_role(role, required_role)
    if has_permission:
        logger.debug(
            f"User {user.id} has role '{_role_value(role)}' in project {project_id}, "
            f"permission granted for required role '{_role_value(required_role)}'"
        )
    else:
        logger.info(
            f"User {user.id} has role '{_role_value(role)}' in project {project_id}, "
            f"but '{_role_value(required_role)}' is required"
        )
    return has_permission


def require_project_permission(
    user: User, project_id: int, required_role: RoleLike, db: Session
) -> Project:
    """
    Require a user to have a specific role for a project, or raise an exception.

    Returns:
        The project, so handlers do not need to load it again

    Raises:
        HTTPException: 404 if the project does not exist or the user is not a member
        HTTPException: 403 if the user is a member with an insufficient role
    """
    project = db.query(Project).filter(Project.id == project_id).first()
    if project is None:
        logger.info(f"Project {project_id} not found")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    role = get_member_role(user, project_id, db)
    if role is None:
        logger.info(f"User {user.id} has no access to project {project_id}, returning 404")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    if not has_minimum_role(role, required_role):
        logger.info(
            f"User {user.id} has role '{_role_value(role)}' in project {project_id}, "
            f"but '{_role_value(required_role)}' is required"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient permissions. Required role: {_role_value(required_role)}",
        )

    return project


def require_task_access(
    user: User, task_id: int, required_role: RoleLike, db: Session
) -> Tuple[Task, Project]:
    """
    Load a task and check the caller's role in its project.

    Raises:
        HTTPException: 404 if the task is missing or the caller is not a member
        HTTPException: 403 if the caller's role is insufficient
    """
    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None:
        logger.info(f"Task {task_id} not found")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    role = get_member_role(user, task.project_id, db)
    if role is None:
        logger.info(f"User {user.id} has no access to task {task_id}, returning 404")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    if not has_minimum_role(role, required_role):
        logger.info(f"User {user.id} has insufficient permissions for task {task_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient permissions. Required role: {_role_value(required_role)}",
        )

    return task, task.project


def get_user_projects(user: User, db: Session, archived: bool = False) -> List[Project]:
    """
    Projects the user created or is a member of.

    Active projects come back most recently updated first, archived ones most
    recently archived first.
    """
    member_project_ids = db.query(ProjectMember.project_id).filter(ProjectMember.user_id == user.id)
    query = db.query(Project).filter(
        or_(Project.creator_id == user.id, Project.id.in_(member_project_ids)),
        Project.is_archived == archived,
    )
    if archived:
        query = query.order_by(Project.archived_at.desc(), Project.id.desc())
    else:
        query = query.order_by(Project.updated_at.desc(), Project.id.desc())

    projects = query.all()
    logger.debug(f"User {user.id} has access to {len(projects)} {'archived' if archived else 'active'} projects")
    return projects
