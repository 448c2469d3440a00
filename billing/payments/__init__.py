"""Outbound payment orders and the gateway checksum utilities."""

from .csrf import PaymentUrlGuard
from .gateway import GatewayClient, GatewayOrderResult
from .identifiers import generate_order_id, generate_transaction_id
from .models import OrderResult, PaymentRecord, PaymentStatus
from .repository import PaymentRepository
from .service import OrderService
from .signature import SignatureCodec, SigningContext

__all__ = [
    "GatewayClient",
    "GatewayOrderResult",
    "OrderResult",
    "OrderService",
    "PaymentRecord",
    "PaymentRepository",
    "PaymentStatus",
    "PaymentUrlGuard",
    "SignatureCodec",
    "SigningContext",
    "generate_order_id",
    "generate_transaction_id",
]
