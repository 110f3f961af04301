"""
TaskTrack Permissions — Table-driven role/action authorization.

The evaluator is a pure lookup over a closed set of roles and actions:

    action | admin      | manager    | member(owner) | member(non-owner)
    create | allow      | allow      | allow         | allow
    edit   | allow      | allow      | allow         | deny
    delete | allow      | deny       | deny          | deny
    assign | allow      | allow      | deny          | deny
    view   | allow(all) | allow(all) | allow(own)    | deny

Rules applied before the table:
    - Unauthenticated actor (role None) → deny everything.
    - Terminal resource (archived) → edit and delete deny for every role.

Ownership means creator or assignee of the task.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy import or_

from tasktrack.engine.context import ExecutionContext
from tasktrack.engine.errors import AuthorizationError
from tasktrack.engine.logging import log, log_security_event

logger = logging.getLogger("tasktrack.security.permissions")


class Role(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"


class Action(str, enum.Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    ASSIGN = "assign"
    VIEW = "view"


class Decision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"

    def __bool__(self) -> bool:
        return self is Decision.ALLOW


# Table cell: (owner, non-owner)
_ALLOW_BOTH = (Decision.ALLOW, Decision.ALLOW)
_OWNER_ONLY = (Decision.ALLOW, Decision.DENY)
_DENY_BOTH = (Decision.DENY, Decision.DENY)

PERMISSION_TABLE: Dict[Role, Dict[Action, tuple]] = {
    Role.ADMIN: {
        Action.CREATE: _ALLOW_BOTH,
        Action.EDIT: _ALLOW_BOTH,
        Action.DELETE: _ALLOW_BOTH,
        Action.ASSIGN: _ALLOW_BOTH,
        Action.VIEW: _ALLOW_BOTH,
    },
    Role.MANAGER: {
        Action.CREATE: _ALLOW_BOTH,
        Action.EDIT: _ALLOW_BOTH,
        Action.DELETE: _DENY_BOTH,
        Action.ASSIGN: _ALLOW_BOTH,
        Action.VIEW: _ALLOW_BOTH,
    },
    Role.MEMBER: {
        Action.CREATE: _ALLOW_BOTH,
        Action.EDIT: _OWNER_ONLY,
        Action.DELETE: _DENY_BOTH,
        Action.ASSIGN: _DENY_BOTH,
        Action.VIEW: _OWNER_ONLY,
    },
}

TERMINAL_DENIED_ACTIONS = frozenset({Action.EDIT, Action.DELETE})


def _coerce_role(role: Union[Role, str, None]) -> Optional[Role]:
    if role is None or isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def authorize(
    role: Union[Role, str, None],
    action: Union[Action, str],
    is_owner: bool,
    is_terminal: bool = False,
) -> Decision:
    """
    Decide whether an actor with ``role`` may perform ``action``.

    Args:
        role: Actor role, or None for an unauthenticated actor. Unknown
              role strings are treated as unauthenticated.
        action: One of Action.
        is_owner: Actor is the creator or assignee of the resource.
        is_terminal: Resource is archived (or otherwise terminal).

    Returns:
        Decision.ALLOW or Decision.DENY.
    """
    resolved = _coerce_role(role)
    if resolved is None:
        return Decision.DENY

    action = Action(action)
    if is_terminal and action in TERMINAL_DENIED_ACTIONS:
        return Decision.DENY

    owner_cell, other_cell = PERMISSION_TABLE[resolved][action]
    return owner_cell if is_owner else other_cell


def is_owner(task: Any, actor_id: Optional[int]) -> bool:
    """Creator or assignee of the task."""
    if actor_id is None:
        return False
    return actor_id in (task.creator_id, task.assignee_id)


def can(ctx: ExecutionContext, action: Union[Action, str], task: Any = None) -> bool:
    """Boolean check for an actor against an optional task."""
    owner = is_owner(task, ctx.actor_id) if task is not None else False
    terminal = bool(task is not None and task.status == "archived")
    return bool(authorize(ctx.role, action, owner, terminal))


def require(
    ctx: ExecutionContext,
    action: Union[Action, str],
    task: Any = None,
    object_type: str = "tasks",
) -> None:
    """
    Raise AuthorizationError unless the actor may perform ``action``.
    Every denial is written to the security log.
    """
    if can(ctx, action, task):
        return
    deny(ctx, action, getattr(task, "id", None), object_type)


def deny(
    ctx: ExecutionContext,
    action: Union[Action, str],
    resource_id: Optional[int] = None,
    object_type: str = "tasks",
) -> None:
    """Log a denial to the security log and raise AuthorizationError."""
    action = Action(action)
    reason = "unauthenticated" if not ctx.is_authenticated else "denied"
    log(log_security_event(
        event=f"access_{reason}",
        object_type=object_type,
        action=action.value,
        actor_id=ctx.actor_id,
        role=ctx.role,
        resource_id=resource_id,
        execution_id=ctx.execution_id,
    ))
    logger.info(
        "Denied %s on %s %s for actor %s (%s)",
        action.value, object_type, resource_id, ctx.actor_id, ctx.role,
    )
    raise AuthorizationError(
        "Authentication required" if reason == "unauthenticated"
        else f"Not allowed to {action.value} this {object_type.rstrip('s')}",
        actor_id=ctx.actor_id,
        role=ctx.role,
        action=action.value,
        task_id=resource_id if object_type == "tasks" else None,
        execution_id=ctx.execution_id,
    )


def visible_tasks(query: Any, ctx: ExecutionContext) -> Any:
    """
    Apply the view scope to a SQLAlchemy query over Task.

    admin/manager see everything; members see tasks they created or are
    assigned to. Callers must reject unauthenticated contexts first.
    """
    from tasktrack.db.models import Task

    if authorize(ctx.role, Action.VIEW, is_owner=False):
        return query
    return query.filter(or_(Task.creator_id == ctx.actor_id, Task.assignee_id == ctx.actor_id))


def require_authenticated(ctx: ExecutionContext, action: Union[Action, str] = Action.VIEW) -> None:
    """Raise AuthorizationError for an unauthenticated context."""
    if not ctx.is_authenticated or _coerce_role(ctx.role) is None:
        deny(ctx, action)
