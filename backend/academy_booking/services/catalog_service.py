"""
SQL-backed catalog and identity collaborators.
Implements CatalogProvider and IdentityProvider over the local catalog tables.
"""

from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.models.catalog import Batch, Center, Participant
from academy_booking.services.interfaces.catalog import BatchInfo, CatalogProvider, CenterInfo, ParticipantInfo
from academy_booking.services.interfaces.identity import IdentityProvider


def _decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


class SqlCatalog(CatalogProvider):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_batch(self, batch_id: str) -> Optional[BatchInfo]:
        result = await self.db.execute(
            select(Batch, Center).join(Center, Center.id == Batch.center_id).where(Batch.id == batch_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        batch, center = row

        return BatchInfo(
            id=batch.id,
            center=CenterInfo(
                id=center.id,
                name=center.name,
                is_active=center.is_active,
                allowed_genders=tuple(center.allowed_genders or ()),
                allowed_disabled=center.allowed_disabled,
                is_only_for_disabled=center.is_only_for_disabled,
            ),
            name=batch.name,
            capacity=batch.capacity,
            sport_id=batch.sport_id,
            age_min=batch.age_min,
            age_max=batch.age_max,
            allowed_genders=tuple(batch.allowed_genders or ()),
            is_allowed_disabled=batch.is_allowed_disabled,
            start_date=batch.start_date,
            end_date=batch.end_date,
            status=batch.status,
            is_active=batch.is_active,
            is_deleted=batch.is_deleted,
            requires_approval=batch.requires_approval,
            admission_fee=_decimal(batch.admission_fee) or Decimal("0"),
            base_price=_decimal(batch.base_price) or Decimal("0"),
            discounted_price=_decimal(batch.discounted_price),
            currency=batch.currency,
        )

    async def get_participants(self, participant_ids: Sequence[str]) -> list[ParticipantInfo]:
        if not participant_ids:
            return []
        result = await self.db.execute(
            select(Participant).where(
                Participant.id.in_(list(participant_ids)),
                Participant.is_active.is_(True),
                Participant.is_deleted.is_(False),
            )
        )
        return [
            ParticipantInfo(
                id=p.id,
                user_id=p.user_id,
                first_name=p.first_name,
                last_name=p.last_name,
                dob=p.dob,
                gender=p.gender,
                has_disability=p.has_disability,
            )
            for p in result.scalars().all()
        ]


class SqlIdentity(IdentityProvider):
    """A center's owner is the only actor authorized for it."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_authorized_for_center(self, actor_id: str, center_id: str) -> bool:
        result = await self.db.execute(select(Center.owner_id).where(Center.id == center_id))
        owner_id = result.scalar_one_or_none()
        return owner_id is not None and owner_id == actor_id
