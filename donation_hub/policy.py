"""Role-based authorization rules.

``can_perform`` is a pure lookup over the rule table below; ``require`` is
what the services call before touching any row.
"""
import logging
from typing import Callable, Dict, NamedTuple, Optional

from . import models
from .errors import AuthorizationError

logger = logging.getLogger(__name__)


class Principal(NamedTuple):
    """The authenticated caller, passed explicitly into every service call."""

    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == models.ADMIN


# Actions
CREATE_REQUEST = "create_request"
UPDATE_REQUEST = "update_request"
DELETE_REQUEST = "delete_request"
LIST_REQUESTS = "list_requests"
ASSIGN_DONATION = "assign_donation"
CREATE_DONATION = "create_donation"
UPDATE_DONATION = "update_donation"
DELETE_DONATION = "delete_donation"
ASSIGN_RECIPIENT = "assign_recipient"
COMPLETE_DONATION = "complete_donation"
CREATE_FEEDBACK = "create_feedback"
UPDATE_FEEDBACK = "update_feedback"
DELETE_FEEDBACK = "delete_feedback"
LIST_FEEDBACK = "list_feedback"
MANAGE_USERS = "manage_users"
MANAGE_PROFILE = "manage_profile"

Rule = Callable[[str, int, Optional[int]], bool]


def _owner(role: str) -> Rule:
    return lambda r, pid, owner_id: r == role and owner_id is not None and pid == owner_id


def _any_of(*roles: str) -> Rule:
    return lambda r, pid, owner_id: r in roles


def _admin_only(r, pid, owner_id) -> bool:
    return False


# Admins pass every rule; entries describe who else may act
RULES: Dict[str, Rule] = {
    CREATE_REQUEST: _owner(models.FOODBANK),
    UPDATE_REQUEST: _owner(models.FOODBANK),
    DELETE_REQUEST: _owner(models.FOODBANK),
    LIST_REQUESTS: _any_of(models.FOODBANK),
    ASSIGN_DONATION: _owner(models.FOODBANK),
    CREATE_DONATION: _owner(models.DONOR),
    UPDATE_DONATION: _owner(models.DONOR),
    DELETE_DONATION: _owner(models.DONOR),
    ASSIGN_RECIPIENT: _owner(models.FOODBANK),
    COMPLETE_DONATION: _owner(models.FOODBANK),
    CREATE_FEEDBACK: _owner(models.RECIPIENT),
    UPDATE_FEEDBACK: _owner(models.RECIPIENT),
    DELETE_FEEDBACK: _owner(models.RECIPIENT),
    LIST_FEEDBACK: _any_of(models.RECIPIENT, models.FOODBANK),
    MANAGE_USERS: _admin_only,
    MANAGE_PROFILE: lambda r, pid, owner_id: owner_id is not None and pid == owner_id,
}


def can_perform(role: str, principal_id: int, action: str, owner_id: Optional[int] = None) -> bool:
    if action not in RULES:
        raise ValueError(f"unknown action: {action}")
    if role == models.ADMIN:
        return True
    return RULES[action](role, principal_id, owner_id)


def require(principal: Principal, action: str, owner_id: Optional[int] = None) -> None:
    if not can_perform(principal.role, principal.id, action, owner_id):
        logger.warning(
            "Denied %s for user %s (role=%s, owner=%s)",
            action, principal.id, principal.role, owner_id,
            extra={"user_id": principal.id},
        )
        raise AuthorizationError(f"{principal.role} may not perform {action.replace('_', ' ')}")
