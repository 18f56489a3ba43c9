"""
支付结算服务

把一条 "checkout.session.completed" 事件转换为一致的持久状态：

    received → authenticated → deduplicated → classified → materialized → fanned-out → acknowledged

- 签名校验是第一道关，未签名或签名无效直接拒绝（400），不做任何解析
- 支付引用（provider + payment_intent）是天然幂等键，重复投递是无操作的成功
- 礼品卡购买与商品订单是两条互斥的子流程
- 商品订单落库后并发执行各项副作用，每项独立隔离：失败只记录日志与审计，不回滚订单
- 运营通知在后台发送，响应不等待
"""
import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError

from sf_core.models import GiftCard, Order, OrderStatus
from sf_core.models.base import utcnow
from sf_core.schemas.checkout import (
    CHECKOUT_COMPLETED,
    CheckoutSession,
    GiftCardPurchase,
    MerchandisePurchase,
    parse_event,
    parse_purchase,
    parse_session,
)
from sf_core.services.audit_service import AuditService
from sf_core.services.base import BaseService
from sf_core.services.code_generator import (
    generate_unique,
    new_gift_card_code,
    new_order_number,
    new_redemption_token,
)
from sf_core.services.ledger_service import AccountRef, BalanceLedger, LedgerEntry
from sf_core.services.notification_service import (
    TelegramNotifier,
    format_gift_card_message,
    format_order_message,
    format_referral_message,
)
from sf_core.services.promotion_service import PromotionService
from sf_core.services.referral_service import ReferralConversion, ReferralConversionResolver
from sf_core.services.store import SettlementStore
from sf_core.services.stripe_client import StripeClient
from sf_core.utils.errors import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailableError,
    SignatureVerificationError,
)
from sf_core.utils.logger import LogContext
from sf_core.utils.signatures import verify_webhook_signature

PAYMENT_PROVIDER = "stripe"


@dataclass
class SideEffectOutcome:
    """单个副作用的执行结果"""
    kind: str
    ok: bool
    detail: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class SettlementOutcome:
    """结算结果（作为 webhook 响应体）"""

    SETTLED = "settled"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"

    status: str
    event_type: Optional[str] = None
    purchase_type: Optional[str] = None
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    side_effects: List[SideEffectOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "event_type": self.event_type,
            "purchase_type": self.purchase_type,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "side_effects": [
                {"kind": e.kind, "ok": e.ok, "detail": e.detail, "error": e.error}
                for e in self.side_effects
            ],
        }


class SettlementService(BaseService):
    """支付结算编排"""

    def __init__(
        self,
        *args,
        store: Optional[SettlementStore] = None,
        ledger: Optional[BalanceLedger] = None,
        promotions: Optional[PromotionService] = None,
        referrals: Optional[ReferralConversionResolver] = None,
        notifier: Optional[TelegramNotifier] = None,
        stripe_client: Optional[StripeClient] = None,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.store = store or SettlementStore()
        self.ledger = ledger or BalanceLedger(self.settings, self.db_manager, store=self.store)
        self.promotions = promotions or PromotionService(self.settings, self.db_manager, store=self.store)
        self.referrals = referrals or ReferralConversionResolver(
            self.settings, self.db_manager, ledger=self.ledger, store=self.store
        )
        self.notifier = notifier or TelegramNotifier(self.settings)
        self.stripe_client = stripe_client or StripeClient(self.settings)

    # ---- 入口 ----

    async def handle_webhook(self, raw_body: bytes, signature_header: Optional[str]) -> SettlementOutcome:
        """
        处理 Stripe webhook

        Args:
            raw_body: 原始请求体（签名基于原始字节）
            signature_header: Stripe-Signature 头

        Returns:
            SettlementOutcome

        Raises:
            SignatureVerificationError: 缺少签名或签名无效
            MalformedEventError: 事件或 metadata 无法解析
            ServiceUnavailableError: 未配置 webhook 密钥
        """
        secret = self.settings.stripe_webhook_secret
        if not secret:
            self.logger.error("Webhook 密钥未配置，拒绝处理事件")
            raise ServiceUnavailableError(code="WEBHOOK_NOT_CONFIGURED", detail="Webhook secret is not configured")
        if not signature_header:
            raise SignatureVerificationError(code="MISSING_SIGNATURE", detail="Missing Stripe-Signature header")
        if not verify_webhook_signature(raw_body, signature_header, secret, self.settings.stripe_signature_tolerance):
            self.logger.warning("Webhook 签名校验失败")
            raise SignatureVerificationError()

        event = parse_event(raw_body)
        with LogContext(trace_id=event.id):
            if event.type != CHECKOUT_COMPLETED:
                self.logger.info(f"忽略事件类型: {event.type}")
                return SettlementOutcome(status=SettlementOutcome.IGNORED, event_type=event.type)

            outcome = await self.settle_session(parse_session(event.object))
            outcome.event_type = event.type
            return outcome

    async def complete_checkout(self, session_id: str, user_id: str) -> SettlementOutcome:
        """
        回跳补单：客户端从支付页返回时 webhook 可能尚未到达

        与 webhook 共用结算流程，按支付引用幂等；已结算时返回已有订单。

        Raises:
            NotFoundError: checkout session 不存在
            BadRequestError: 尚未支付
            ForbiddenError: session 不属于当前用户
        """
        payload = await self.stripe_client.retrieve_checkout_session(session_id)
        if not payload:
            raise NotFoundError(code="CHECKOUT_SESSION_NOT_FOUND", resource=f"Checkout session {session_id}")

        checkout = parse_session(payload)
        if checkout.payment_status != "paid":
            raise BadRequestError(code="PAYMENT_NOT_COMPLETED", detail=f"Payment status is {checkout.payment_status}")
        if checkout.meta("userId") != user_id:
            raise ForbiddenError(code="SESSION_OWNER_MISMATCH", detail="Checkout session belongs to another user")

        with LogContext(trace_id=session_id):
            return await self.settle_session(checkout)

    async def settle_session(self, checkout: CheckoutSession) -> SettlementOutcome:
        """分类并结算一个已支付的 checkout session"""
        purchase = parse_purchase(checkout)

        with LogContext(payment_reference=purchase.payment_id):
            existing = await self._find_existing(purchase.payment_id)
            if existing is not None:
                return self._duplicate(existing, purchase)

            if isinstance(purchase, GiftCardPurchase):
                return await self._settle_gift_card(purchase)
            return await self._settle_merchandise(purchase)

    # ---- 幂等 ----

    async def _find_existing(self, payment_id: str) -> Optional[Order]:
        async with self.db_manager.get_session() as session:
            return await self.store.find_order_by_payment_reference(session, PAYMENT_PROVIDER, payment_id)

    def _duplicate(self, order: Order, purchase: Union[GiftCardPurchase, MerchandisePurchase]) -> SettlementOutcome:
        self.logger.info(f"重复投递，订单已存在: order={order.order_number}")
        return SettlementOutcome(
            status=SettlementOutcome.DUPLICATE,
            purchase_type=self._purchase_type(purchase),
            order_id=order.id,
            order_number=order.order_number,
        )

    @staticmethod
    def _purchase_type(purchase: Union[GiftCardPurchase, MerchandisePurchase]) -> str:
        return "gift_card" if isinstance(purchase, GiftCardPurchase) else "merchandise"

    async def _materialize(
        self,
        purchase: Union[GiftCardPurchase, MerchandisePurchase],
        writer: Callable[[Any], Awaitable[Tuple[Order, Any]]],
    ) -> Tuple[Optional[Order], Any, Optional[Order]]:
        """
        在单个事务中落库

        并发投递时预检查可能都未命中，支付引用唯一约束是最终裁决：
        冲突且订单已存在即按重复处理。

        Returns:
            (新订单, 附带对象, 已存在的订单)
        """
        try:
            async with self.db_manager.get_transaction() as session:
                order, extra = await writer(session)
            return order, extra, None
        except IntegrityError:
            existing = await self._find_existing(purchase.payment_id)
            if existing is None:
                raise
            return None, None, existing

    async def _new_order_number(self, session) -> str:
        return await generate_unique(
            lambda: new_order_number(self.settings.order_number_prefix),
            lambda candidate: self.store.is_order_number_taken(session, candidate),
            max_attempts=self.settings.code_generation_max_attempts,
            kind="order_number",
        )

    # ---- 礼品卡子流程 ----

    async def _settle_gift_card(self, purchase: GiftCardPurchase) -> SettlementOutcome:
        async def write(session) -> Tuple[Order, GiftCard]:
            code = await generate_unique(
                lambda: new_gift_card_code(self.settings.gift_card_code_length),
                lambda candidate: self.store.is_gift_card_code_taken(session, candidate),
                max_attempts=self.settings.code_generation_max_attempts,
                kind="gift_card_code",
            )
            token = new_redemption_token()

            order = await self.store.create_order(
                session,
                order_number=await self._new_order_number(session),
                user_id=purchase.user_id,
                status=OrderStatus.CONFIRMED,
                subtotal=purchase.amount,
                discount=0,
                shipping_cost=0,
                total=purchase.amount,
                payment_provider=PAYMENT_PROVIDER,
                payment_id=purchase.payment_id,
                payment_status="completed",
                is_digital=True,
                shipping_address={
                    "type": "digital",
                    "recipientEmail": purchase.recipient_email,
                    "note": "Gift Card digitale - consegna via email",
                },
                notes=f"Gift Card per {purchase.recipient_name or '-'} ({purchase.recipient_email or '-'})",
            )
            gift_card = await self.store.create_gift_card(
                session,
                code=code,
                redemption_token=token,
                amount=purchase.amount,
                balance=purchase.amount,
                is_active=True,
                recipient_name=purchase.recipient_name,
                recipient_email=purchase.recipient_email,
                sender_name=purchase.sender_name,
                message=purchase.message,
                template=purchase.template or self.settings.gift_card_default_template,
                purchased_by=purchase.user_id,
                order_id=order.id,
                expires_at=utcnow() + timedelta(days=self.settings.gift_card_validity_days),
            )
            await self.store.register_gift_card_code(session, code, token, gift_card.id)
            return order, gift_card

        order, gift_card, existing = await self._materialize(purchase, write)
        if existing is not None:
            return self._duplicate(existing, purchase)

        self.logger.info(f"礼品卡已创建: order={order.order_number}, gift_card_id={gift_card.id}, amount={gift_card.amount}")
        self.notifier.notify_detached(format_gift_card_message(
            gift_card.code,
            gift_card.amount,
            purchase.sender_name,
            purchase.recipient_name,
            purchase.recipient_email,
            purchase.message,
        ))
        return SettlementOutcome(
            status=SettlementOutcome.SETTLED,
            purchase_type="gift_card",
            order_id=order.id,
            order_number=order.order_number,
        )

    # ---- 商品订单子流程 ----

    async def _settle_merchandise(self, purchase: MerchandisePurchase) -> SettlementOutcome:
        breakdown = purchase.breakdown

        async def write(session) -> Tuple[Order, list]:
            order = await self.store.create_order(
                session,
                order_number=await self._new_order_number(session),
                user_id=purchase.user_id,
                status=OrderStatus.CONFIRMED,
                subtotal=breakdown.subtotal,
                discount=breakdown.discount,
                shipping_cost=breakdown.shipping_cost,
                total=breakdown.total,
                promotion_code=purchase.promotion_code,
                gift_card_code=purchase.gift_card_code,
                gift_card_amount=purchase.gift_card_amount,
                user_credit_amount=purchase.user_credit_amount,
                payment_provider=PAYMENT_PROVIDER,
                payment_id=purchase.payment_id,
                payment_status="completed",
                is_digital=False,
                shipping_address=purchase.shipping_address.to_store(),
            )
            items = await self.store.create_order_items(session, order.id, purchase.lines)
            return order, items

        order, _, existing = await self._materialize(purchase, write)
        if existing is not None:
            return self._duplicate(existing, purchase)

        with LogContext(order_id=order.id):
            self.logger.info(f"订单已创建: order={order.order_number}, total={order.total}, items={len(purchase.lines)}")

            # 运营通知不等待
            self.notifier.notify_detached(format_order_message(
                order.order_number, order.total, order.shipping_address, purchase.lines
            ))

            side_effects = await self._fan_out(order, purchase)

        return SettlementOutcome(
            status=SettlementOutcome.SETTLED,
            purchase_type="merchandise",
            order_id=order.id,
            order_number=order.order_number,
            side_effects=side_effects,
        )

    def _planned_side_effects(
        self,
        order: Order,
        purchase: MerchandisePurchase
    ) -> List[Tuple[str, Callable[[], Awaitable[Any]]]]:
        effects: List[Tuple[str, Callable[[], Awaitable[Any]]]] = [
            ("cart_clear", lambda: self._clear_cart(purchase.user_id)),
        ]

        if purchase.gift_card_code and purchase.gift_card_amount > 0:
            effects.append(("gift_card_debit", lambda: self.ledger.debit(
                AccountRef.gift_card(purchase.gift_card_code),
                purchase.gift_card_amount,
                reference_type="order",
                reference_id=str(order.id),
            )))

        if purchase.promotion_code:
            effects.append(("promotion_usage", lambda: self.promotions.redeem(
                purchase.promotion_code, order.id, purchase.user_id
            )))

        if purchase.user_credit_amount > 0:
            effects.append(("credit_debit", lambda: self.ledger.debit(
                AccountRef.user_credit(purchase.user_id),
                purchase.user_credit_amount,
                reference_type="order",
                reference_id=str(order.id),
                description=f"Pagamento ordine #{order.order_number}",
            )))

        if purchase.referral_eligible:
            effects.append(("referral", lambda: self._convert_referral(order, purchase.user_id)))

        return effects

    async def _fan_out(self, order: Order, purchase: MerchandisePurchase) -> List[SideEffectOutcome]:
        """并发执行副作用；相互之间无顺序保证，各自触及不相交的记录"""
        effects = self._planned_side_effects(order, purchase)
        return list(await asyncio.gather(
            *(self._run_side_effect(order, kind, factory) for kind, factory in effects)
        ))

    async def _run_side_effect(
        self,
        order: Order,
        kind: str,
        factory: Callable[[], Awaitable[Any]],
    ) -> SideEffectOutcome:
        """执行单个副作用，超时与异常都在此隔离"""
        try:
            result = await asyncio.wait_for(factory(), timeout=self.settings.side_effect_timeout_seconds)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            self.logger.error(
                f"结算副作用失败: kind={kind}",
                side_effect=kind,
                order_id=order.id,
                error=error,
                exc_info=True,
            )
            await AuditService.log_action(
                self.db_manager,
                module="settlement",
                action="side_effect_failed",
                record_type="order",
                record_id=str(order.id),
                details={"side_effect": kind, "error": error},
            )
            return SideEffectOutcome(kind=kind, ok=False, error=error)

        detail = self._describe(result)
        if result is None and kind in ("gift_card_debit", "credit_debit"):
            await AuditService.log_action(
                self.db_manager,
                module="settlement",
                action="ledger_account_missing",
                record_type="order",
                record_id=str(order.id),
                details={"side_effect": kind},
            )
        return SideEffectOutcome(kind=kind, ok=True, detail=detail)

    @staticmethod
    def _describe(result: Any) -> Optional[Dict[str, Any]]:
        if isinstance(result, LedgerEntry):
            return {"balance_before": str(result.balance_before), "new_balance": str(result.new_balance)}
        if isinstance(result, ReferralConversion):
            return result.to_dict()
        if isinstance(result, bool):
            return {"counted": result}
        if isinstance(result, int):
            return {"rows": result}
        if result is None:
            return {"account_found": False}
        return None

    async def _clear_cart(self, user_id: str) -> int:
        async with self.db_manager.get_transaction() as session:
            removed = await self.store.clear_cart(session, user_id)
        self.logger.info(f"购物车已清空: user_id={user_id}, rows={removed}")
        return removed

    async def _convert_referral(self, order: Order, user_id: str) -> ReferralConversion:
        conversion = await self.referrals.try_convert(user_id, order.id)
        if conversion.reward_credited:
            self.notifier.notify_detached(format_referral_message(order.order_number, conversion.reward_amount))
        return conversion
