"""
SettleFlow 数据模型包
"""
from .base import Base
from .orders import Order, OrderItem, OrderStatus, CartItem
from .gift_cards import GiftCard, UsedGiftCardCode
from .promotions import Promotion, PromotionRedemption
from .credit import UserCredit, CreditTransaction
from .referrals import Referral, ReferralStatus, UserReferralCode
from .audit_log import AuditLog

__all__ = [
    "Base",
    "Order",
    "OrderItem",
    "OrderStatus",
    "CartItem",
    "GiftCard",
    "UsedGiftCardCode",
    "Promotion",
    "PromotionRedemption",
    "UserCredit",
    "CreditTransaction",
    "Referral",
    "ReferralStatus",
    "UserReferralCode",
    "AuditLog",
]
