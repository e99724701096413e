"""Role to capability mapping used by every router.

Handlers ask ``capabilities_for(role, resource)`` (or use the
``require_capability`` dependency) instead of comparing role names inline.
"""

from enum import Enum
from typing import Dict, FrozenSet

from fastapi import Depends

from ..core.errors import Forbidden
from ..models.models import User
from .jwt import get_current_user


class Resource(str, Enum):
    TRANSACTION = "transaction"
    TASK = "task"
    TEMPLATE = "template"
    DOCUMENT = "document"
    DRIVE = "drive"


class Capability(str, Enum):
    VIEW_ALL = "view_all"
    VIEW_ASSIGNED = "view_assigned"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    DELETE_ANY = "delete_any"
    DELETE_OWN = "delete_own"
    ASSIGN = "assign"
    REGISTER = "register"
    UPLOAD = "upload"
    MANAGE = "manage"


C = Capability

_TASK_CAPS = frozenset({C.VIEW, C.CREATE, C.UPDATE, C.DELETE})
_STAFF_DOCUMENT_CAPS = frozenset({C.VIEW, C.REGISTER, C.DELETE_OWN})

POLICY: Dict[str, Dict[Resource, FrozenSet[Capability]]] = {
    "admin": {
        Resource.TRANSACTION: frozenset({C.VIEW_ALL, C.CREATE, C.UPDATE, C.DELETE, C.ASSIGN}),
        Resource.TASK: _TASK_CAPS,
        Resource.TEMPLATE: frozenset({C.VIEW, C.CREATE, C.UPDATE, C.DELETE}),
        Resource.DOCUMENT: _STAFF_DOCUMENT_CAPS | {C.DELETE_ANY},
        Resource.DRIVE: frozenset({C.UPLOAD, C.MANAGE}),
    },
    "manager": {
        Resource.TRANSACTION: frozenset({C.VIEW_ALL, C.CREATE, C.UPDATE, C.DELETE, C.ASSIGN}),
        Resource.TASK: _TASK_CAPS,
        Resource.TEMPLATE: frozenset({C.VIEW, C.CREATE, C.UPDATE, C.DELETE}),
        Resource.DOCUMENT: _STAFF_DOCUMENT_CAPS,
        Resource.DRIVE: frozenset({C.UPLOAD}),
    },
    "agent": {
        Resource.TRANSACTION: frozenset({C.VIEW_ALL, C.CREATE, C.UPDATE}),
        Resource.TASK: _TASK_CAPS,
        Resource.TEMPLATE: frozenset({C.VIEW}),
        Resource.DOCUMENT: _STAFF_DOCUMENT_CAPS,
        Resource.DRIVE: frozenset({C.UPLOAD}),
    },
    "assistant": {
        Resource.TRANSACTION: frozenset({C.VIEW_ASSIGNED, C.UPDATE}),
        Resource.TASK: _TASK_CAPS,
        Resource.TEMPLATE: frozenset({C.VIEW}),
        Resource.DOCUMENT: _STAFF_DOCUMENT_CAPS,
        Resource.DRIVE: frozenset({C.UPLOAD}),
    },
}


def capabilities_for(role: str, resource: Resource) -> FrozenSet[Capability]:
    """Unknown roles get no capabilities."""
    return POLICY.get(role, {}).get(resource, frozenset())


def can(user: User, resource: Resource, capability: Capability) -> bool:
    return capability in capabilities_for(user.role_name, resource)


def sees_only_assigned(user: User) -> bool:
    caps = capabilities_for(user.role_name, Resource.TRANSACTION)
    return Capability.VIEW_ALL not in caps


def require_capability(resource: Resource, *capabilities: Capability):
    """Dependency passing when the caller holds any of ``capabilities`` on ``resource``."""
    wanted = set(capabilities)

    def checker(user: User = Depends(get_current_user)) -> User:
        if wanted & capabilities_for(user.role_name, resource):
            return user
        raise Forbidden("Operation not permitted for your role")

    return checker
