"""
Collaborator interfaces for dependency inversion.
Allows swapping implementations without changing booking logic.
"""

from .catalog import BatchInfo, CatalogProvider, CenterInfo, ParticipantInfo
from .gateway import ExternalOrder, GatewayPayment, PaymentGateway
from .identity import IdentityProvider
from .notifier import LogNotifier, Notifier, notify_safely

__all__ = [
    'BatchInfo', 'CatalogProvider', 'CenterInfo', 'ParticipantInfo',
    'ExternalOrder', 'GatewayPayment', 'PaymentGateway',
    'IdentityProvider',
    'LogNotifier', 'Notifier', 'notify_safely',
]
