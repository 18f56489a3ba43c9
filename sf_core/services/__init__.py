"""
SettleFlow 业务服务
"""
from .base import BaseService, ServiceResult
from .ledger_service import AccountRef, BalanceLedger, LedgerEntry
from .settlement_service import SettlementService, SettlementOutcome
from .referral_service import ReferralConversionResolver, ReferralConversion
from .courier_service import CourierDispatchService
from .receipt_service import ReceiptService

__all__ = [
    "BaseService",
    "ServiceResult",
    "AccountRef",
    "BalanceLedger",
    "LedgerEntry",
    "SettlementService",
    "SettlementOutcome",
    "ReferralConversionResolver",
    "ReferralConversion",
    "CourierDispatchService",
    "ReceiptService",
]
