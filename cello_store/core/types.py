"""
Entity values shared by both backends.

Data is carried in frozen dataclasses; the store stamps target timestamps,
token timestamps come from the caller that issued the token.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


class TargetType(str, enum.Enum):
    """Kinds of deployment target a project can point at."""

    AWS_ACCOUNT = "aws_account"

    @classmethod
    def values(cls) -> Tuple[str, ...]:
        return tuple(m.value for m in cls)


@dataclass(frozen=True)
class Project:
    """A project and the repository it deploys from. Owns targets and tokens."""

    project_id: str
    repository: str = ""


@dataclass(frozen=True)
class TargetProperties:
    role_arn: str
    policy_arns: Tuple[str, ...] = ()
    policy_document: str = ""

    def __post_init__(self) -> None:
        # Accept any iterable from callers but keep the value hashable.
        if not isinstance(self.policy_arns, tuple):
            object.__setattr__(self, "policy_arns", tuple(self.policy_arns or ()))


@dataclass(frozen=True)
class Target:
    """
    A named deployment target within a project.
    created_at/updated_at are None on values built by callers and set on values read back.
    """

    name: str
    type: str
    properties: TargetProperties
    project_id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Token:
    """Token metadata. The secret itself lives elsewhere."""

    token_id: str = ""
    project_id: str = ""
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return self == Token()


__all__ = ["Project", "Target", "TargetProperties", "TargetType", "Token"]
