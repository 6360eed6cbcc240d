"""
Project status lifecycle (``workflow_kernel.domain.statuses``).

Responsibility
--------------
The fixed, ordered set of project statuses, the actor roles, and the
transition table that says which status may follow which, and who may
perform each move.

Architecture position
---------------------
**Kernel domain layer** -- pure values.  ZERO I/O.

Invariants enforced
-------------------
* The table is total: every ProjectStatus has an entry (possibly empty).
* Every allowed pair names at least one role.
* ``closed`` and ``cancelled`` are terminal.
* Only ``admin`` may move a project into ``cancelled``.
"""

from __future__ import annotations

from enum import Enum, unique
from types import MappingProxyType
from typing import Mapping

from workflow_kernel.exceptions import UnknownRoleError, UnknownStatusError


@unique
class ProjectStatus(str, Enum):
    """Lifecycle status of a project, in lifecycle order."""

    DRAFT = "draft"
    ONBOARDING = "onboarding"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    DELIVERED = "delivered"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    @property
    def order(self) -> int:
        return STATUS_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


@unique
class ActorRole(str, Enum):
    """Role of the actor requesting a transition."""

    ADMIN = "admin"
    MANAGER = "manager"
    CLIENT = "client"


STATUS_ORDER: tuple[ProjectStatus, ...] = tuple(ProjectStatus)

INITIAL_STATUS = ProjectStatus.DRAFT

_ALL_ROLES = frozenset(ActorRole)
_STAFF = frozenset({ActorRole.ADMIN, ActorRole.MANAGER})
_ADMIN_ONLY = frozenset({ActorRole.ADMIN})

_S = ProjectStatus

# from -> {to -> roles allowed}
TRANSITION_TABLE: Mapping[ProjectStatus, Mapping[ProjectStatus, frozenset[ActorRole]]] = (
    MappingProxyType({
        _S.DRAFT: MappingProxyType({
            _S.ONBOARDING: _ALL_ROLES,
            _S.CANCELLED: _ADMIN_ONLY,
        }),
        _S.ONBOARDING: MappingProxyType({
            _S.ACTIVE: _STAFF,
            _S.ON_HOLD: _STAFF,
            _S.CANCELLED: _ADMIN_ONLY,
        }),
        _S.ACTIVE: MappingProxyType({
            _S.ON_HOLD: _STAFF,
            _S.DELIVERED: _STAFF,
            _S.CANCELLED: _ADMIN_ONLY,
        }),
        _S.ON_HOLD: MappingProxyType({
            _S.ACTIVE: _STAFF,
            _S.CANCELLED: _ADMIN_ONLY,
        }),
        _S.DELIVERED: MappingProxyType({
            # Reopening delivered work is an administrative decision
            _S.ACTIVE: _ADMIN_ONLY,
            # Client acceptance closes the project
            _S.CLOSED: _ALL_ROLES,
        }),
        # Terminal states
        _S.CLOSED: MappingProxyType({}),
        _S.CANCELLED: MappingProxyType({}),
    })
)

# Allowed status transitions (from -> set of valid next states)
ALLOWED_TRANSITIONS: Mapping[ProjectStatus, frozenset[ProjectStatus]] = MappingProxyType({
    source: frozenset(targets) for source, targets in TRANSITION_TABLE.items()
})


def is_allowed(source: ProjectStatus, target: ProjectStatus) -> bool:
    """Check if ``source -> target`` is in the transition table."""
    return target in ALLOWED_TRANSITIONS[source]


def roles_for(source: ProjectStatus, target: ProjectStatus) -> frozenset[ActorRole]:
    """Roles allowed to move ``source -> target`` (empty if the pair is illegal)."""
    return TRANSITION_TABLE[source].get(target, frozenset())


def parse_status(value: ProjectStatus | str) -> ProjectStatus:
    """Parse a status at the boundary.

    Accepts the enum, its value (``"on_hold"``), or its name (``"ON_HOLD"``).

    Raises:
        UnknownStatusError: for anything outside the enumerated set.
    """
    if isinstance(value, ProjectStatus):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        try:
            return ProjectStatus(normalized)
        except ValueError:
            pass
    raise UnknownStatusError(str(value))


def parse_role(value: ActorRole | str) -> ActorRole:
    """Parse an actor role at the boundary.

    Raises:
        UnknownRoleError: for anything outside the enumerated set.
    """
    if isinstance(value, ActorRole):
        return value
    if isinstance(value, str):
        try:
            return ActorRole(value.strip().lower())
        except ValueError:
            pass
    raise UnknownRoleError(str(value))
