"""
Role and Transition Policy Definitions

Roles and the lifecycle transition table.
Every user holds exactly one role; all role-gated rules are defined here.

DESIGN PRINCIPLES:
- Fail closed: anything not listed is denied
- One role per user (a set of roles is an invariant violation)
- Lifecycle transitions are gated per (from, to) pair, not per permission
"""

# =============================================================================
# ROLES
# =============================================================================

class Role:
    """User roles, least privileged first."""
    CLERK = "CLERK"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


ALL_ROLES = (Role.CLERK, Role.MANAGER, Role.ADMIN)

# Roles that may be handed out through invites or user edits.
# ADMIN only ever comes from company registration.
ASSIGNABLE_ROLES = (Role.CLERK, Role.MANAGER)

# Roles that may manage other users of their company
USER_MANAGER_ROLES = frozenset({Role.MANAGER, Role.ADMIN})


# =============================================================================
# INVOICE STATUS TRANSITIONS
# =============================================================================

# (from_status, to_status) -> roles allowed to perform it.
# Field edits without a status change are allowed for every role while the
# invoice is not SUBMITTED; that rule lives in lifecycle_service.
ROLE_TRANSITIONS = {
    ("DRAFT", "READY"): frozenset({Role.MANAGER, Role.ADMIN}),
    ("READY", "SUBMITTED"): frozenset({Role.ADMIN}),
}

# Roles accepted by the dedicated submit entry point.
# Must stay a subset of ROLE_TRANSITIONS[("READY", "SUBMITTED")].
SUBMIT_ROLES = frozenset({Role.ADMIN})


def normalize_role(value) -> str | None:
    """
    Return the single role name for a stored or submitted role value.

    Returns None for anything that is not exactly one known role, including
    collections holding several roles.
    """
    if isinstance(value, (list, tuple, set, frozenset)):
        if len(value) != 1:
            return None
        value = next(iter(value))
    if not isinstance(value, str):
        return None
    role = value.strip().upper()
    return role if role in ALL_ROLES else None


def roles_allowed_for(from_status: str, to_status: str) -> frozenset:
    return ROLE_TRANSITIONS.get((from_status, to_status), frozenset())
