"""快递承运商客户端

POST {api_url}/shipments，Bearer 鉴权。任何非 2xx、网络错误或响应缺少运单号都视为下单失败。
"""

from typing import Any, Dict, List, Optional

import httpx

from sf_core.config import CourierConfig
from sf_core.utils.errors import CourierSubmissionError
from sf_core.utils.external_api_timing import timed_external_api
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)


class CourierClient:
    """承运商下单客户端"""

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def submit_shipment(
        self,
        config: CourierConfig,
        reference: str,
        sender: Dict[str, Any],
        recipient: Dict[str, Any],
        parcels: List[Dict[str, Any]],
        service: str = "standard",
    ) -> str:
        """
        创建运单

        Args:
            config: 承运商配置
            reference: 订单号
            sender: 发件人
            recipient: 收件人（订单收货地址）
            parcels: 包裹规格
            service: 服务类型

        Returns:
            运单号

        Raises:
            CourierSubmissionError: 下单失败
        """
        payload = {
            "reference": reference,
            "sender": sender,
            "recipient": recipient,
            "parcels": parcels,
            "service": service,
        }
        url = f"{config.api_url.rstrip('/')}/shipments"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async with timed_external_api(config.name.upper(), "POST", "/shipments", reference=reference):
                    response = await client.post(
                        url,
                        json=payload,
                        headers={"Authorization": f"Bearer {config.api_key}"},
                    )
        except httpx.TimeoutException:
            raise CourierSubmissionError("request timed out")
        except httpx.HTTPError as e:
            raise CourierSubmissionError(f"transport error: {type(e).__name__}")

        if response.status_code >= 400:
            raise CourierSubmissionError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError:
            raise CourierSubmissionError("invalid JSON response")

        if not isinstance(data, dict):
            raise CourierSubmissionError("unexpected response body")
        tracking_number = data.get("trackingNumber") or data.get("tracking_number")
        if not tracking_number:
            raise CourierSubmissionError("response without tracking number")

        logger.info(f"{config.name} 下单成功: reference={reference}, tracking={tracking_number}")
        return str(tracking_number)
