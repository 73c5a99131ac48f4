"""
Payment gateway factory.
Configures which gateway implementation the payment routes use.
"""

from typing import Optional

from carrental.services.interfaces.payment_gateway import PaymentGateway
from carrental.infrastructure.khalti_client import KhaltiGateway


# Singleton instance
_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """
    Get payment gateway singleton.

    Used as a FastAPI dependency; tests override it with a scripted fake.
    """
    global _gateway
    if _gateway is None:
        _gateway = KhaltiGateway.from_settings()
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
