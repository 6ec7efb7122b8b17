"""
Catalog collaborator interface.
The booking core only reads batch, center and participant records.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence


@dataclass(frozen=True)
class CenterInfo:
    id: str
    name: str
    is_active: bool = True
    allowed_genders: tuple[str, ...] = ()
    allowed_disabled: bool = True
    is_only_for_disabled: bool = False


@dataclass(frozen=True)
class BatchInfo:
    id: str
    center: CenterInfo
    name: str
    capacity: int
    sport_id: Optional[str] = None
    age_min: int = 0
    age_max: int = 100
    allowed_genders: tuple[str, ...] = ()
    is_allowed_disabled: bool = True
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str = "published"
    is_active: bool = True
    is_deleted: bool = False
    requires_approval: bool = True
    admission_fee: Decimal = Decimal("0")
    base_price: Decimal = Decimal("0")
    discounted_price: Optional[Decimal] = None
    currency: str = "INR"


@dataclass(frozen=True)
class ParticipantInfo:
    id: str
    user_id: str
    first_name: str
    last_name: Optional[str] = None
    dob: Optional[date] = None
    gender: Optional[str] = None
    has_disability: bool = False

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.id


class CatalogProvider(ABC):
    """
    Read-only access to the academy catalog.

    Implementations:
    - SqlCatalog: reads the local catalog tables
    """

    @abstractmethod
    async def get_batch(self, batch_id: str) -> Optional[BatchInfo]:
        """Return the batch with its center, or None if it does not exist."""

    @abstractmethod
    async def get_participants(self, participant_ids: Sequence[str]) -> list[ParticipantInfo]:
        """Return the active, non-deleted participants among the given ids."""
