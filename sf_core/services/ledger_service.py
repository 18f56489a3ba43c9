"""
余额账本

用户余额（store credit）与礼品卡余额的唯一写入方：
- 扣减按 max(0, balance - amount) 封底，余额永不为负
- 余额更新走版本号 CAS，冲突时重读重试
- 用户余额的每次变动与流水记录在同一事务内写入
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sf_core.models import CreditTransaction
from sf_core.services.base import BaseService
from sf_core.services.store import SettlementStore
from sf_core.utils.errors import ConcurrencyError, ValidationError
from sf_core.utils.money import quantize

MAX_CAS_RETRIES = 3


@dataclass(frozen=True)
class AccountRef:
    """账户引用：用户余额按用户 ID，礼品卡按兑换码"""
    kind: str
    key: str

    USER_CREDIT = "user_credit"
    GIFT_CARD = "gift_card"

    @classmethod
    def user_credit(cls, user_id: str) -> "AccountRef":
        return cls(kind=cls.USER_CREDIT, key=user_id)

    @classmethod
    def gift_card(cls, code: str) -> "AccountRef":
        return cls(kind=cls.GIFT_CARD, key=code.upper())


@dataclass(frozen=True)
class LedgerEntry:
    """一次余额变动的结果"""
    account: AccountRef
    balance_before: Decimal
    new_balance: Decimal

    @property
    def applied(self) -> Decimal:
        """实际变动金额（扣减封底后可能小于请求金额）"""
        return abs(self.new_balance - self.balance_before)


class BalanceLedger(BaseService):
    """余额账本服务"""

    def __init__(self, *args, store: Optional[SettlementStore] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.store = store or SettlementStore()

    async def debit(
        self,
        account: AccountRef,
        amount: Decimal,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[LedgerEntry]:
        """
        扣减余额

        Args:
            account: 账户引用
            amount: 扣减金额（正数）
            reference_type: 关联类型（如 order）
            reference_id: 关联 ID
            description: 流水描述
            session: 调用方事务；为空时自行开启事务

        Returns:
            LedgerEntry；账户不存在时返回 None（本单未使用该余额，视为无需扣减）

        Raises:
            ConcurrencyError: CAS 重试耗尽
        """
        amount = self._validate_amount(amount)
        return await self._run(
            session, self._apply, account, -amount, reference_type, reference_id, description,
            CreditTransaction.TYPE_PURCHASE,
        )

    async def credit(
        self,
        account: AccountRef,
        amount: Decimal,
        transaction_type: str = CreditTransaction.TYPE_REFERRAL_REWARD,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[LedgerEntry]:
        """
        增加余额

        用户余额账户不存在时自动创建；礼品卡余额不会超过面值。
        """
        amount = self._validate_amount(amount)
        return await self._run(
            session, self._apply, account, amount, reference_type, reference_id, description,
            transaction_type,
        )

    @staticmethod
    def _validate_amount(amount: Decimal) -> Decimal:
        amount = quantize(amount)
        if amount <= 0:
            raise ValidationError(code="INVALID_AMOUNT", detail=f"Ledger amount must be positive, got {amount}")
        return amount

    async def _run(self, session: Optional[AsyncSession], operation, *args) -> Optional[LedgerEntry]:
        if session is not None:
            return await operation(session, *args)
        async with self.db_manager.get_transaction() as tx:
            return await operation(tx, *args)

    async def _apply(
        self,
        session: AsyncSession,
        account: AccountRef,
        delta: Decimal,
        reference_type: Optional[str],
        reference_id: Optional[str],
        description: Optional[str],
        transaction_type: str,
    ) -> Optional[LedgerEntry]:
        if account.kind == AccountRef.GIFT_CARD:
            return await self._apply_gift_card(session, account, delta)
        if account.kind == AccountRef.USER_CREDIT:
            return await self._apply_user_credit(
                session, account, delta, reference_type, reference_id, description, transaction_type
            )
        raise ValidationError(code="UNKNOWN_ACCOUNT_KIND", detail=f"Unknown account kind: {account.kind}")

    async def _apply_gift_card(
        self,
        session: AsyncSession,
        account: AccountRef,
        delta: Decimal,
    ) -> Optional[LedgerEntry]:
        for retry in range(MAX_CAS_RETRIES):
            gift_card = await self.store.get_gift_card_by_code(session, account.key)
            if gift_card is None:
                self.logger.warning(f"礼品卡不存在，跳过余额变动: code={account.key}")
                return None

            balance_before = gift_card.balance
            new_balance = min(gift_card.amount, max(Decimal("0.00"), balance_before + delta))

            if await self.store.swap_gift_card_balance(session, gift_card.id, gift_card.version, new_balance):
                self.logger.info(
                    f"礼品卡余额变动: gift_card_id={gift_card.id}, "
                    f"balance={balance_before} -> {new_balance}, active={new_balance > 0}"
                )
                return LedgerEntry(account=account, balance_before=balance_before, new_balance=new_balance)

            self.logger.warning(f"礼品卡余额版本冲突，重试 {retry + 1}/{MAX_CAS_RETRIES}")

        raise ConcurrencyError("礼品卡余额并发冲突，请重试")

    async def _apply_user_credit(
        self,
        session: AsyncSession,
        account: AccountRef,
        delta: Decimal,
        reference_type: Optional[str],
        reference_id: Optional[str],
        description: Optional[str],
        transaction_type: str,
    ) -> Optional[LedgerEntry]:
        for retry in range(MAX_CAS_RETRIES):
            credit = await self.store.get_user_credit(session, account.key)
            if credit is None:
                if delta < 0:
                    self.logger.warning(f"用户余额账户不存在，跳过扣减: user_id={account.key}")
                    return None
                credit = await self.store.create_user_credit(session, account.key)
                self.logger.info(f"创建余额账户: user_id={account.key}")

            balance_before = credit.balance
            new_balance = max(Decimal("0.00"), balance_before + delta)
            applied = new_balance - balance_before

            swapped = await self.store.swap_user_credit_balance(
                session,
                credit.id,
                credit.version,
                new_balance,
                earned=applied if applied > 0 else Decimal("0"),
                spent=-applied if applied < 0 else Decimal("0"),
            )
            if swapped:
                # 流水与余额同一事务，流水写入失败时整体回滚
                await self.store.insert_credit_transaction(
                    session,
                    user_id=account.key,
                    transaction_type=transaction_type,
                    amount=applied,
                    balance_before=balance_before,
                    balance_after=new_balance,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    description=description,
                )
                self.logger.info(
                    f"用户余额变动: user_id={account.key}, type={transaction_type}, "
                    f"amount={applied}, balance={balance_before} -> {new_balance}"
                )
                return LedgerEntry(account=account, balance_before=balance_before, new_balance=new_balance)

            self.logger.warning(f"用户余额版本冲突，重试 {retry + 1}/{MAX_CAS_RETRIES}")

        raise ConcurrencyError("用户余额并发冲突，请重试")
