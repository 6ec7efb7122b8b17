"""
Identity collaborator interface.
Authentication happens upstream; the core only asks capability questions.
"""

from abc import ABC, abstractmethod


class IdentityProvider(ABC):
    @abstractmethod
    async def is_authorized_for_center(self, actor_id: str, center_id: str) -> bool:
        """True when the actor may manage bookings of the center."""
