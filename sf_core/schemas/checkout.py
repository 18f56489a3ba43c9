"""
Stripe 结算事件解析

metadata 是结账时唯一的数据通道（全部为字符串），在管道入口一次性解析为强类型结构，
解析失败即 MalformedEventError（400），不会在后续步骤中出现缺失字段。
"""
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from sf_core.utils.errors import MalformedEventError
from sf_core.utils.logger import get_logger
from sf_core.utils.money import cents_to_decimal, quantize

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PURCHASE_TYPE_GIFT_CARD = "gift_card"


class StripeEvent(BaseModel):
    """Stripe 事件外壳"""
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: Dict[str, Any]

    @property
    def object(self) -> Dict[str, Any]:
        return self.data.get("object") or {}


class ShippingCost(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount_total: int = 0


class CheckoutSession(BaseModel):
    """checkout.session 对象中结算需要的字段（金额单位：分）"""
    model_config = ConfigDict(extra="ignore")

    id: str
    payment_intent: Optional[Union[str, Dict[str, Any]]] = None
    payment_status: Optional[str] = None
    amount_subtotal: Optional[int] = None
    amount_total: int
    shipping_cost: Optional[ShippingCost] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    line_items: Optional[Dict[str, Any]] = None

    @property
    def payment_id(self) -> str:
        """支付引用：优先 payment_intent，缺失时退回 session id"""
        if isinstance(self.payment_intent, dict):
            return self.payment_intent.get("id") or self.id
        return self.payment_intent or self.id

    def meta(self, key: str) -> Optional[str]:
        value = self.metadata.get(key)
        if value is None:
            return None
        value = str(value).strip()
        return value or None


class OrderLine(BaseModel):
    """订单行（来自 itemsJson 或 itemsCompact）"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    product_id: str = Field(alias="productId", min_length=1)
    product_name: str = Field(default="Prodotto", alias="name")
    product_price: Decimal = Field(alias="price", ge=0)
    quantity: int = Field(gt=0)
    size: str = "Standard"
    color: str = "Standard"
    weight_grams: Optional[int] = Field(default=None, ge=0)

    @field_validator("product_price")
    @classmethod
    def _two_decimals(cls, v: Decimal) -> Decimal:
        return quantize(v)

    @field_validator("size", "color", mode="before")
    @classmethod
    def _default_variant(cls, v: Any) -> str:
        return v or "Standard"

    @field_validator("weight_grams", mode="before")
    @classmethod
    def _zero_weight_is_unknown(cls, v: Any) -> Any:
        return v or None

    @property
    def unit_measure(self) -> str:
        return "kg" if self.weight_grams else "pz"


class ShippingAddress(BaseModel):
    """收货地址，存储时保持店面使用的 camelCase 键"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    postal_code: str = Field(alias="postalCode", min_length=1)
    province: str = ""
    phone: str = ""
    country: str = "IT"

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class MonetaryBreakdown:
    """订单金额：total = subtotal - discount + shipping_cost，均非负"""
    subtotal: Decimal
    discount: Decimal
    shipping_cost: Decimal
    total: Decimal

    @classmethod
    def from_authoritative(cls, subtotal: Decimal, shipping_cost: Decimal, total: Decimal) -> "MonetaryBreakdown":
        """以支付服务商金额为准推导折扣"""
        subtotal, shipping_cost, total = quantize(subtotal), quantize(shipping_cost), quantize(total)
        discount = subtotal + shipping_cost - total
        if min(subtotal, shipping_cost, total) < 0 or discount < 0:
            raise MalformedEventError(
                f"Inconsistent amounts: subtotal={subtotal} shipping={shipping_cost} total={total}"
            )
        return cls(subtotal=subtotal, discount=discount, shipping_cost=shipping_cost, total=total)


@dataclass(frozen=True)
class GiftCardPurchase:
    session_id: str
    payment_id: str
    user_id: str
    amount: Decimal
    recipient_name: Optional[str]
    recipient_email: Optional[str]
    sender_name: Optional[str]
    message: Optional[str]
    template: Optional[str]


@dataclass(frozen=True)
class MerchandisePurchase:
    session_id: str
    payment_id: str
    user_id: str
    lines: List[OrderLine]
    shipping_address: ShippingAddress
    breakdown: MonetaryBreakdown
    promotion_code: Optional[str]
    promotion_discount: Decimal
    gift_card_code: Optional[str]
    gift_card_amount: Decimal
    user_credit_amount: Decimal
    referral_eligible: bool


Purchase = Union[GiftCardPurchase, MerchandisePurchase]


def parse_event(raw_body: bytes) -> StripeEvent:
    """解析 webhook 请求体"""
    try:
        return StripeEvent.model_validate_json(raw_body)
    except PydanticValidationError as e:
        raise MalformedEventError(f"Invalid event payload: {e.error_count()} validation error(s)")


def parse_session(payload: Dict[str, Any]) -> CheckoutSession:
    try:
        return CheckoutSession.model_validate(payload)
    except PydanticValidationError as e:
        raise MalformedEventError(f"Invalid checkout session: {e.error_count()} validation error(s)")


def _load_json(session: CheckoutSession, key: str) -> Any:
    raw = session.meta(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise MalformedEventError(f"metadata.{key} is not valid JSON")


def _session_cents(value: Any, field: str) -> Decimal:
    try:
        return cents_to_decimal(value)
    except ValueError:
        raise MalformedEventError(f"{field} is not an amount in cents")


def _meta_cents(session: CheckoutSession, key: str) -> Decimal:
    """metadata 中的回传金额（分），必须为非负整数"""
    amount = _session_cents(session.meta(key), f"metadata.{key}")
    if amount < 0:
        raise MalformedEventError(f"metadata.{key} must not be negative")
    return amount


def _meta_flag(session: CheckoutSession, key: str, default: bool) -> bool:
    raw = session.meta(key)
    if raw is None:
        return default
    return raw.lower() not in ("false", "0", "no")


def _line_item_details(session: CheckoutSession, index: int) -> Dict[str, Any]:
    """从展开的 line_items 中补全商品名与规格（itemsCompact 只携带 ID/数量/价格/重量）"""
    data = (session.line_items or {}).get("data") or []
    if index >= len(data):
        return {}
    line_item = data[index] or {}
    product = (line_item.get("price") or {}).get("product")
    product = product if isinstance(product, dict) else {}
    product_meta = product.get("metadata") or {}
    details = {
        "name": line_item.get("description") or product.get("name"),
        "productId": product_meta.get("productId"),
        "size": product_meta.get("size"),
        "color": product_meta.get("color"),
    }
    return {k: v for k, v in details.items() if v}


def _parse_lines(session: CheckoutSession) -> List[OrderLine]:
    compact = _load_json(session, "itemsCompact")
    raw_lines: List[Dict[str, Any]] = []
    if compact is not None:
        if not isinstance(compact, list):
            raise MalformedEventError("metadata.itemsCompact must be a list")
        for index, item in enumerate(compact):
            if not isinstance(item, dict):
                raise MalformedEventError("metadata.itemsCompact entries must be objects")
            line = {"productId": item.get("p"), "quantity": item.get("q"), "price": item.get("pr"), "weight_grams": item.get("w")}
            line.update(_line_item_details(session, index))
            raw_lines.append(line)
    else:
        full = _load_json(session, "itemsJson")
        if not isinstance(full, list):
            raise MalformedEventError("metadata.itemsJson or metadata.itemsCompact is required")
        raw_lines = full

    if not raw_lines:
        raise MalformedEventError("order has no line items")
    try:
        return [OrderLine.model_validate(line) for line in raw_lines]
    except PydanticValidationError as e:
        raise MalformedEventError(f"Invalid line item: {e.errors()[0]['msg']}")


def _parse_address(session: CheckoutSession) -> ShippingAddress:
    compact = _load_json(session, "shipTo")
    if compact is not None:
        if not isinstance(compact, dict):
            raise MalformedEventError("metadata.shipTo must be an object")
        first_name, _, last_name = (compact.get("n") or "").strip().partition(" ")
        raw = {
            "firstName": first_name,
            "lastName": last_name.strip(),
            "address": compact.get("a") or "",
            "city": compact.get("c") or "",
            "postalCode": compact.get("p") or "",
            "province": compact.get("pr") or "",
            "phone": compact.get("ph") or "",
            "country": "IT",
        }
    else:
        raw = _load_json(session, "shippingAddress")
        if not isinstance(raw, dict):
            raise MalformedEventError("metadata.shippingAddress or metadata.shipTo is required")
    try:
        return ShippingAddress.model_validate(raw)
    except PydanticValidationError as e:
        raise MalformedEventError(f"Invalid shipping address: {e.errors()[0]['loc']}")


def _parse_gift_card(session: CheckoutSession, user_id: str) -> GiftCardPurchase:
    amount = _session_cents(session.amount_total, "amount_total")
    if amount <= 0:
        raise MalformedEventError("gift card amount must be positive")

    declared = session.meta("amount")
    if declared is not None and declared.replace(".", "", 1).isdigit() and quantize(declared) != amount:
        logger.warning(f"礼品卡金额不一致，以支付金额为准: metadata={declared} paid={amount}")

    return GiftCardPurchase(
        session_id=session.id,
        payment_id=session.payment_id,
        user_id=user_id,
        amount=amount,
        recipient_name=session.meta("recipientName"),
        recipient_email=session.meta("recipientEmail"),
        sender_name=session.meta("senderName"),
        message=session.meta("message") or session.meta("giftCardMessage"),
        template=session.meta("template"),
    )


def _parse_merchandise(session: CheckoutSession, user_id: str) -> MerchandisePurchase:
    lines = _parse_lines(session)
    address = _parse_address(session)

    if session.amount_subtotal is not None:
        subtotal = _session_cents(session.amount_subtotal, "amount_subtotal")
    else:
        subtotal = quantize(sum((line.product_price * line.quantity for line in lines), Decimal("0")))
    shipping_cost = _session_cents(
        session.shipping_cost.amount_total if session.shipping_cost else 0, "shipping_cost.amount_total"
    )
    total = _session_cents(session.amount_total, "amount_total")
    breakdown = MonetaryBreakdown.from_authoritative(subtotal, shipping_cost, total)

    promotion_discount = _meta_cents(session, "discountAmount")
    gift_card_amount = _meta_cents(session, "giftCardAmount")
    user_credit_amount = _meta_cents(session, "userCreditAmount")

    echoed = promotion_discount + gift_card_amount + user_credit_amount
    if echoed != breakdown.discount:
        logger.warning(
            f"客户端回传折扣与支付金额不一致: echoed={echoed} derived={breakdown.discount}"
        )

    gift_card_code = session.meta("giftCardCode")
    promotion_code = session.meta("promotionCode")

    return MerchandisePurchase(
        session_id=session.id,
        payment_id=session.payment_id,
        user_id=user_id,
        lines=lines,
        shipping_address=address,
        breakdown=breakdown,
        promotion_code=promotion_code.upper() if promotion_code else None,
        promotion_discount=promotion_discount,
        gift_card_code=gift_card_code.upper() if gift_card_code else None,
        gift_card_amount=gift_card_amount,
        user_credit_amount=user_credit_amount,
        referral_eligible=_meta_flag(session, "referralEligible", default=True),
    )


def parse_purchase(session: CheckoutSession) -> Purchase:
    """
    将 checkout session 分类并解析为礼品卡购买或商品订单

    Raises:
        MalformedEventError: 缺少 userId、metadata 无法解析或金额不一致
    """
    user_id = session.meta("userId")
    if not user_id:
        raise MalformedEventError("metadata.userId is required")

    if session.meta("type") == PURCHASE_TYPE_GIFT_CARD:
        return _parse_gift_card(session, user_id)
    return _parse_merchandise(session, user_id)
