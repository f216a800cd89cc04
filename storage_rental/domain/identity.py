from dataclasses import dataclass
from enum import Enum


class UserRole(str, Enum):
    RENTER = "RENTER"
    LENDER = "LENDER"


@dataclass(frozen=True)
class Identity:
    """Verified caller identity supplied by the upstream auth layer."""

    user_id: str
    role: UserRole

    @property
    def is_renter(self) -> bool:
        return self.role == UserRole.RENTER
