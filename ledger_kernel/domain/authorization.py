"""
Authorization policy evaluation.

Responsibility:
    A single explicit function, ``evaluate(actor, resource, action, table)``,
    decides every permission question.  The admin override is the
    ``bypass_all`` capability checked first; module/action resolution is the
    pure ``PermissionSettings`` table passed in by the caller.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  PermissionTableAuthorizer adapts the
    table into the two predicates DocumentWorkflow consumes
    (``is_owner`` and ``has_elevated_permission``).

Permission names:
    ``<module>.<verb>``      base permission (e.g. ``sales.delete``)
    ``<module>.<verb>_any``  elevated: act on documents other actors own
    ``<module>.*``           every verb in the module, elevated
    ``*``                    every verb in every module, elevated
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from ledger_config.schema import PermissionSettings

BYPASS_ALL = "bypass_all"
WILDCARD = "*"

# Verbs any holder of the base permission may use regardless of ownership
_UNOWNED_VERBS = frozenset({"view", "create"})


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Actor:
    """The resolved caller of a request, as supplied by the auth layer."""

    id: str | None
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)
    capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def display_id(self) -> str:
        return self.id or "Guest"


@dataclass(frozen=True)
class ResourceRef:
    """What is being acted on: its module and (optional) owner."""

    module: str
    owner_id: str | None = None


def resolve_actor(
    actor_id: str | None,
    roles: frozenset[str] | set[str] = frozenset(),
    permissions: frozenset[str] | set[str] = frozenset(),
    *,
    table: PermissionSettings,
) -> Actor:
    """Build an Actor, granting ``bypass_all`` to configured admin roles."""
    roles = frozenset(roles)
    capabilities = frozenset({BYPASS_ALL}) if roles & set(table.admin_roles) else frozenset()
    return Actor(
        id=actor_id,
        roles=roles,
        permissions=frozenset(permissions),
        capabilities=capabilities,
    )


def has_capability(actor: Actor, capability: str) -> bool:
    return capability in actor.capabilities


def _holds_elevated(actor: Actor, module: str, verb: str) -> bool:
    perms = actor.permissions
    return (
        WILDCARD in perms
        or f"{module}.{WILDCARD}" in perms
        or f"{module}.{verb}_any" in perms
    )


def evaluate(
    actor: Actor,
    resource: ResourceRef,
    action: str,
    table: PermissionSettings,
) -> Decision:
    """
    Decide whether ``actor`` may perform ``action`` on ``resource``.

    1. ``bypass_all``                                -> ALLOW
    2. action unknown for the module                  -> DENY
    3. elevated permission for module/verb            -> ALLOW
    4. base permission and (view/create or owner)     -> ALLOW
    5. otherwise                                      -> DENY
    """
    if has_capability(actor, BYPASS_ALL):
        return Decision.ALLOW

    verb = table.verb_for(action)
    if verb not in table.verbs_for(resource.module):
        return Decision.DENY

    if _holds_elevated(actor, resource.module, verb):
        return Decision.ALLOW

    if f"{resource.module}.{verb}" in actor.permissions:
        if verb in _UNOWNED_VERBS:
            return Decision.ALLOW
        if actor.id is not None and actor.id == resource.owner_id:
            return Decision.ALLOW

    return Decision.DENY


class Authorizer(Protocol):
    """Predicates the document workflow needs from the authorization layer."""

    def is_owner(self, actor: Actor, owner_id: str) -> bool: ...

    def has_elevated_permission(self, actor: Actor, module: str, action: str) -> bool: ...


class PermissionTableAuthorizer:
    """Authorizer backed by the configured module/action table."""

    def __init__(self, table: PermissionSettings):
        self._table = table

    def is_owner(self, actor: Actor, owner_id: str) -> bool:
        return actor.id is not None and actor.id == owner_id

    def has_elevated_permission(self, actor: Actor, module: str, action: str) -> bool:
        if has_capability(actor, BYPASS_ALL):
            return True
        return _holds_elevated(actor, module, self._table.verb_for(action))

    def evaluate(self, actor: Actor, resource: ResourceRef, action: str) -> Decision:
        return evaluate(actor, resource, action, self._table)
