"""
SettleFlow 入站事件结构
"""
from .checkout import (
    StripeEvent,
    CheckoutSession,
    OrderLine,
    ShippingAddress,
    MonetaryBreakdown,
    GiftCardPurchase,
    MerchandisePurchase,
    parse_event,
    parse_purchase,
)

__all__ = [
    "StripeEvent",
    "CheckoutSession",
    "OrderLine",
    "ShippingAddress",
    "MonetaryBreakdown",
    "GiftCardPurchase",
    "MerchandisePurchase",
    "parse_event",
    "parse_purchase",
]
