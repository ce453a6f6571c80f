"""
Explicit entity validation.

Each rule is a small function returning a list of FieldError (empty when the
value passes). validate_* functions compose the rules per entity, and
ensure_valid() turns a non-empty list into a ValidationError.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from .core.errors import FieldError, ValidationError
from .core.types import Project, Target, TargetProperties, TargetType, Token
from .timeutils import ensure_utc

TARGET_NAME_MIN = 4
TARGET_NAME_MAX = 32
MAX_POLICY_ARNS = 5

_ALNUM_UNDERSCORE = re.compile(r"[A-Za-z0-9_]+")

Rule = Callable[[], List[FieldError]]


def required(field: str, value: object) -> List[FieldError]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return [FieldError(field, f"{field} is required")]
    return []


def length_between(field: str, value: str, low: int, high: int) -> List[FieldError]:
    if value is None:
        return []
    if not (low <= len(value) <= high):
        return [FieldError(field, f"{field} must be between {low} and {high} characters")]
    return []


def alnum_underscore(field: str, value: str) -> List[FieldError]:
    if not value:
        return []
    if not _ALNUM_UNDERSCORE.fullmatch(value):
        return [FieldError(field, f"{field} must be alphanumeric underscore")]
    return []


def one_of(field: str, value: str, allowed: Sequence[str]) -> List[FieldError]:
    if value not in allowed:
        choices = ", ".join(f"'{a}'" for a in allowed)
        return [FieldError(field, f"{field} must be one of {choices}")]
    return []


def max_items(field: str, values: Sequence[object], limit: int) -> List[FieldError]:
    if len(values or ()) > limit:
        return [FieldError(field, f"{field} cannot be more than {limit}")]
    return []


def is_valid_arn(value: str) -> bool:
    """
    arn:<partition>:<service>:<region>:<account-id>:<resource>
    Partition, service and resource must be non-empty; region and account may be empty (IAM, S3).
    """
    if not isinstance(value, str) or not value.startswith("arn:"):
        return False
    sections = value.split(":", 5)
    if len(sections) != 6:
        return False
    _, partition, service, _region, _account, resource = sections
    return bool(partition) and bool(service) and bool(resource)


def valid_arn(field: str, value: str) -> List[FieldError]:
    if not value:
        return []
    if not is_valid_arn(value):
        return [FieldError(field, f"{field} must be a valid arn")]
    return []


def _collect(rules: Iterable[Rule]) -> List[FieldError]:
    errors: List[FieldError] = []
    for rule in rules:
        errors.extend(rule())
    return errors


def validate_target_properties(properties: Optional[TargetProperties]) -> List[FieldError]:
    if properties is None:
        return [FieldError("properties", "properties is required")]
    arns = list(properties.policy_arns or ())
    errors = _collect(
        [
            lambda: required("role_arn", properties.role_arn),
            lambda: valid_arn("role_arn", properties.role_arn),
            lambda: max_items("policy_arns", arns, MAX_POLICY_ARNS),
        ]
    )
    if any(not is_valid_arn(a) for a in arns):
        errors.append(FieldError("policy_arns", "policy_arns contains an invalid arn"))
    return errors


def validate_target(target: Target) -> List[FieldError]:
    return _collect(
        [
            lambda: required("name", target.name),
            lambda: alnum_underscore("name", target.name),
            lambda: length_between("name", target.name, TARGET_NAME_MIN, TARGET_NAME_MAX),
            lambda: required("type", target.type),
            lambda: one_of("type", target.type, TargetType.values()) if target.type else [],
            lambda: validate_target_properties(target.properties),
        ]
    )


def validate_project(project: Project) -> List[FieldError]:
    return required("project_id", project.project_id)


def validate_token(token: Token) -> List[FieldError]:
    errors = _collect(
        [
            lambda: required("token_id", token.token_id),
            lambda: required("project_id", token.project_id),
            lambda: required("created_at", token.created_at),
        ]
    )
    if (
        isinstance(token.created_at, datetime)
        and isinstance(token.expires_at, datetime)
        and ensure_utc(token.expires_at) < ensure_utc(token.created_at)
    ):
        errors.append(FieldError("expires_at", "expires_at must not be before created_at"))
    return errors


def ensure_valid(errors: Sequence[FieldError], *, op: str, identity: Optional[str] = None) -> None:
    """Raise ValidationError if any rule failed."""
    if errors:
        raise ValidationError(errors, op=op, identity=identity)


def ensure_target(op: str, project_id: str, target: Target) -> None:
    errors = required("project_id", project_id) + validate_target(target)
    ensure_valid(errors, op=op, identity=f"{project_id}/{target.name}")


def ensure_project(op: str, project: Project) -> None:
    ensure_valid(validate_project(project), op=op, identity=project.project_id)


def ensure_token(op: str, token: Token) -> None:
    ensure_valid(validate_token(token), op=op, identity=token.token_id)
