from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Supported roles."""

    USER = "user"
    STAFF = "staff"

    @property
    def can_manage_queue(self) -> bool:
        return self is Role.STAFF


@dataclass(frozen=True, slots=True)
class Identity:
    """Verified caller handed over by the access gate."""

    user_id: str
    role: Role

    @property
    def can_manage_queue(self) -> bool:
        return self.role.can_manage_queue
