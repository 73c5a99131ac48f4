"""
Payment gateway interface.
Lets the reconciliation engine talk to Khalti in production and to a
scripted fake in tests without changing business logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class InitiatedPayment:
    pidx: str
    payment_url: str
    raw: dict = field(default_factory=dict)


@dataclass
class VerifiedPayment:
    """Result of a direct verify call. `idx` is set only on success."""

    idx: Optional[str]
    raw: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return bool(self.idx)


@dataclass
class LookedUpPayment:
    pidx: str
    status: str  # Completed, Pending, Initiated, Refunded, Expired, User canceled, ...
    transaction_id: Optional[str] = None
    total_amount: Optional[Any] = None
    raw: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations raise GatewayUnavailable on network errors and timeouts
    and GatewayRejected when the provider explicitly declines a request.
    """

    @abstractmethod
    async def initiate(
        self,
        *,
        amount_paisa: int,
        purchase_order_id: str,
        purchase_order_name: str,
        return_url: str,
        customer_info: dict,
    ) -> InitiatedPayment:
        """Open a payment session and return its pidx and checkout URL."""

    @abstractmethod
    async def verify(self, token: str, amount_paisa: int) -> VerifiedPayment:
        """Synchronously verify a client-side payment token."""

    @abstractmethod
    async def lookup(self, pidx: str) -> LookedUpPayment:
        """Fetch the current status of a payment session."""

    async def close(self) -> None:
        """Release any held connections."""
