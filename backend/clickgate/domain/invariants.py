"""
Domain invariants for data-access rules and role assignment.

All invariants are checked BEFORE any side effects (database writes). A
violation is rejected, never silently coerced.
"""

import logging
import uuid
from typing import Any, Iterable

from ..auth.patterns import validate_pattern
from .access import AccessRuleSpec, AccessType, RoleSubject, UserSubject

logger = logging.getLogger(__name__)

PRIORITY_MIN = -1000
PRIORITY_MAX = 1000
MAX_DESCRIPTION_LENGTH = 500


class InvariantViolation(Exception):
    """
    Raised when a domain invariant is violated.

    Handled explicitly by the service layer, which maps it to an
    application error.
    """

    def __init__(self, message: str, *, invariant: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.invariant = invariant
        self.details = details or {}

        logger.error(
            "invariant_violation invariant=%s message=%s details=%s",
            invariant,
            message,
            details,
        )


def build_subject(
    role_id: uuid.UUID | None, user_id: uuid.UUID | None
) -> RoleSubject | UserSubject:
    """
    A rule applies to exactly one of a role or a user.

    Raises:
        InvariantViolation: If both or neither are given
    """
    if (role_id is None) == (user_id is None):
        raise InvariantViolation(
            "Rule must target exactly one of role_id or user_id",
            invariant="rule.single_subject",
            details={
                "role_id": str(role_id) if role_id else None,
                "user_id": str(user_id) if user_id else None,
            },
        )
    if role_id is not None:
        return RoleSubject(role_id=role_id)
    return UserSubject(user_id=user_id)  # type: ignore[arg-type]


def validate_priority(priority: int) -> None:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvariantViolation(
            "Priority must be an integer",
            invariant="rule.priority_bounds",
            details={"priority": repr(priority)},
        )
    if not (PRIORITY_MIN <= priority <= PRIORITY_MAX):
        raise InvariantViolation(
            f"Priority {priority} must be between {PRIORITY_MIN} and {PRIORITY_MAX}",
            invariant="rule.priority_bounds",
            details={"priority": priority},
        )


def validate_rule_spec(spec: AccessRuleSpec) -> AccessRuleSpec:
    """
    Check every rule invariant for a rule about to be written.

    Raises:
        InvariantViolation: On the first violated invariant
    """
    if not isinstance(spec.subject, (RoleSubject, UserSubject)):
        raise InvariantViolation(
            "Rule must target exactly one of role_id or user_id",
            invariant="rule.single_subject",
        )

    for field_name in ("database_pattern", "table_pattern"):
        value = getattr(spec, field_name)
        try:
            validate_pattern(value, field=field_name)
        except ValueError as exc:
            raise InvariantViolation(
                str(exc),
                invariant="rule.pattern",
                details={"field": field_name, "length": len(value) if isinstance(value, str) else None},
            ) from exc

    if not isinstance(spec.access_type, AccessType):
        raise InvariantViolation(
            f"Invalid access_type {spec.access_type!r}",
            invariant="rule.access_type",
        )

    validate_priority(spec.priority)

    if spec.description is not None and len(spec.description) > MAX_DESCRIPTION_LENGTH:
        raise InvariantViolation(
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
            invariant="rule.description_length",
            details={"length": len(spec.description)},
        )

    return spec


def validate_rule_set(specs: Iterable[AccessRuleSpec], *, subject: RoleSubject | UserSubject) -> list[AccessRuleSpec]:
    """Validate a full replacement list; every rule must belong to ``subject``."""
    validated: list[AccessRuleSpec] = []
    for index, spec in enumerate(specs):
        if spec.subject != subject:
            raise InvariantViolation(
                "Bulk rules must all target the replaced subject",
                invariant="rule.bulk_subject",
                details={"index": index},
            )
        validated.append(validate_rule_spec(spec))
    return validated


def validate_single_role(role_ids: Iterable[uuid.UUID], *, user_id: Any) -> uuid.UUID | None:
    """
    A principal resolves to zero or one role after any mutation.

    Raises:
        InvariantViolation: If more than one role is requested
    """
    unique = list(dict.fromkeys(role_ids))
    if len(unique) > 1:
        raise InvariantViolation(
            "A user can hold at most one role",
            invariant="user.single_role",
            details={"user_id": str(user_id), "role_count": len(unique)},
        )
    return unique[0] if unique else None
