"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .payment_gateway import PaymentGateway, InitiatedPayment, VerifiedPayment, LookedUpPayment

__all__ = ['PaymentGateway', 'InitiatedPayment', 'VerifiedPayment', 'LookedUpPayment']
