"""
通知服务

尽力而为的外部通知：运营 Telegram 提醒与买家交易邮件。
任何发送失败只记日志，绝不向调用方抛出；结算正确性不依赖通知。
"""
import asyncio
from decimal import Decimal
from html import escape
from typing import Any, Dict, Optional, Sequence

import httpx

from sf_core.config import Settings, get_settings
from sf_core.tasks.background import spawn_background
from sf_core.utils.external_api_timing import timed_external_api
from sf_core.utils.logger import get_logger
from sf_core.utils.money import format_eur

logger = get_logger(__name__)


class TelegramNotifier:
    """运营群 Telegram 通知"""

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    async def notify(self, message: str) -> None:
        """发送消息；未配置时跳过，失败只记录日志"""
        if not self.settings.telegram_configured:
            logger.info("Telegram 未配置，跳过通知")
            return

        url = f"{self.settings.telegram_api_base}/bot{self.settings.telegram_bot_token}/sendMessage"
        payload = {
            "chat_id": self.settings.telegram_chat_id,
            "text": message,
            "parse_mode": "HTML",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds, transport=self._transport
            ) as client:
                async with timed_external_api("Telegram", "POST", "/sendMessage"):
                    response = await client.post(url, json=payload)
            if response.status_code >= 400:
                logger.warning(f"Telegram 通知发送失败: HTTP {response.status_code}")
        except Exception as e:
            logger.warning(f"Telegram 通知发送异常: {type(e).__name__}: {e}")

    def notify_detached(self, message: str) -> asyncio.Task:
        """后台发送，调用方不等待结果"""
        return spawn_background(self.notify(message), name="telegram-notify")


class OrderEmailNotifier:
    """买家订单状态邮件（交给外部邮件函数发送）"""

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    async def send_status_email(self, order_id: int, status: str) -> None:
        endpoint = self.settings.order_email_endpoint
        if not endpoint:
            logger.info(f"订单邮件端点未配置，跳过: order_id={order_id}, status={status}")
            return

        headers = {}
        if self.settings.order_email_api_key:
            headers["Authorization"] = f"Bearer {self.settings.order_email_api_key}"
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds, transport=self._transport
            ) as client:
                async with timed_external_api("OrderEmail", "POST", "/send-order-email", order_id=order_id):
                    response = await client.post(
                        endpoint, json={"orderId": order_id, "status": status}, headers=headers
                    )
            if response.status_code >= 400:
                logger.warning(f"订单邮件发送失败: order_id={order_id}, HTTP {response.status_code}")
        except Exception as e:
            logger.warning(f"订单邮件发送异常: order_id={order_id}, {type(e).__name__}: {e}")

    def send_status_email_detached(self, order_id: int, status: str) -> asyncio.Task:
        return spawn_background(self.send_status_email(order_id, status), name=f"order-email-{order_id}")


def _weight_label(weight_grams: int) -> str:
    if weight_grams >= 1000:
        decimals = 0 if weight_grams % 1000 == 0 else 2
        return f"{weight_grams / 1000:.{decimals}f} Kg"
    return f"{weight_grams} g"


def format_order_message(
    order_number: str,
    total: Decimal,
    address: Dict[str, Any],
    lines: Sequence[Any],
) -> str:
    """新订单运营通知"""
    items = []
    for line in lines:
        description = escape(line.product_name)
        if line.weight_grams:
            description += f" ({_weight_label(line.weight_grams)})"
        items.append(f"• {description} x{line.quantity} - {format_eur(line.product_price * line.quantity)}")

    return (
        "🛒 <b>NUOVO ORDINE!</b>\n\n"
        f"📦 <b>Ordine:</b> #{escape(order_number)}\n"
        f"💰 <b>Totale:</b> {format_eur(total)}\n\n"
        "📍 <b>Consegna:</b>\n"
        f"{escape(address.get('firstName', ''))} {escape(address.get('lastName', ''))}\n"
        f"{escape(address.get('address', ''))}\n"
        f"{escape(address.get('postalCode', ''))} {escape(address.get('city', ''))} "
        f"({escape(address.get('province', ''))})\n"
        f"📞 {escape(address.get('phone') or 'N/D')}\n\n"
        "🛍️ <b>Prodotti:</b>\n"
        f"{chr(10).join(items) or 'Nessun dettaglio'}\n\n"
        "✅ Pagamento completato via Stripe"
    )


def format_gift_card_message(
    code: str,
    amount: Decimal,
    sender_name: Optional[str],
    recipient_name: Optional[str],
    recipient_email: Optional[str],
    message: Optional[str],
) -> str:
    """新礼品卡运营通知"""
    text = (
        "🎁 <b>NUOVA GIFT CARD!</b>\n\n"
        f"💳 <b>Codice:</b> {escape(code)}\n"
        f"💰 <b>Importo:</b> {format_eur(amount)}\n\n"
        f"👤 <b>Da:</b> {escape(sender_name or '-')}\n"
        f"🎯 <b>Per:</b> {escape(recipient_name or '-')}\n"
        f"📧 <b>Email:</b> {escape(recipient_email or '-')}\n"
    )
    if message:
        text += f"\n💬 <i>\"{escape(message)}\"</i>\n"
    return text + "\n✅ Pagamento completato via Stripe"


def format_referral_message(order_number: str, reward_amount: Decimal) -> str:
    """推荐转化运营通知"""
    return (
        "🎉 <b>REFERRAL CONVERTITO!</b>\n\n"
        f"📦 <b>Ordine:</b> #{escape(order_number)}\n"
        f"💰 Credito di <b>{format_eur(reward_amount)}</b> accreditato a chi ha invitato."
    )


def format_manual_review_message(order_number: str, courier: str, reason: str) -> str:
    """快递下单失败，转人工处理"""
    return (
        "⚠️ <b>ORDINE IN REVISIONE MANUALE</b>\n\n"
        f"📦 <b>Ordine:</b> #{escape(order_number)}\n"
        f"🚚 <b>Corriere:</b> {escape(courier.upper())}\n"
        f"📝 {escape(reason)}"
    )
