"""Stripe API 客户端

只覆盖结算需要的两个只读查询：
1. 查询 checkout session（回跳补单）
2. 查询 payment intent（获取收据链接）
"""

from typing import Any, Dict, Optional, Sequence

import httpx

from sf_core.config import Settings, get_settings
from sf_core.utils.errors import PaymentProviderError, ServiceUnavailableError
from sf_core.utils.external_api_timing import timed_external_api
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)


class StripeClient:
    """Stripe REST 客户端（使用 httpx）"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """关闭客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if not self.settings.stripe_secret_key:
            raise ServiceUnavailableError(code="STRIPE_NOT_CONFIGURED", detail="Stripe secret key is not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.stripe_api_base,
                auth=(self.settings.stripe_secret_key, ""),
                timeout=self.settings.http_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def _get(self, path: str, expand: Sequence[str] = ()) -> Dict[str, Any]:
        client = self._get_client()
        params = [("expand[]", field) for field in expand]
        try:
            async with timed_external_api("Stripe", "GET", path):
                response = await client.get(path, params=params)
        except httpx.TimeoutException:
            logger.error(f"Stripe 请求超时: {path}")
            raise PaymentProviderError(code="STRIPE_TIMEOUT", detail="Stripe request timed out")
        except httpx.HTTPError as e:
            logger.error(f"Stripe 请求失败: {path}, {type(e).__name__}")
            raise PaymentProviderError(detail=f"Stripe request failed: {type(e).__name__}")

        if response.status_code == 404:
            return {}
        if response.status_code >= 400:
            logger.error(f"Stripe 返回错误: {path}, HTTP {response.status_code}")
            raise PaymentProviderError(detail=f"Stripe returned HTTP {response.status_code}")
        return response.json()

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """
        查询 checkout session（展开 line_items 以补全商品信息）

        Returns:
            session 对象；不存在时返回空字典
        """
        return await self._get(
            f"/v1/checkout/sessions/{session_id}",
            expand=("line_items", "line_items.data.price.product"),
        )

    async def retrieve_payment_intent(self, payment_intent_id: str, expand: Sequence[str] = ("latest_charge",)) -> Dict[str, Any]:
        """查询 payment intent，默认展开 latest_charge"""
        return await self._get(f"/v1/payment_intents/{payment_intent_id}", expand=expand)
