"""
Stripe webhook 签名校验

签名头格式: t=<unix 时间戳>,v1=<hex>[,v1=<hex>...]
签名内容: HMAC-SHA256(secret, "<t>.<原始请求体>")
"""
import hashlib
import hmac
import time
from typing import List, Optional, Tuple

from .logger import get_logger

logger = get_logger(__name__)


def _parse_signature_header(header: str) -> Tuple[Optional[int], List[str]]:
    """解析签名头，返回 (时间戳, v1 签名列表)"""
    timestamp = None
    signatures = []
    for element in header.split(","):
        key, sep, value = element.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """生成签名头（测试与本地回放使用）"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}"


def verify_webhook_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance: int = 300,
    now: Optional[int] = None,
) -> bool:
    """
    校验 webhook 签名和时间戳

    Args:
        payload: 原始请求体（必须是未经解析的字节）
        signature_header: Stripe-Signature 头
        secret: webhook 共享密钥
        tolerance: 时间戳容忍秒数，防重放
        now: 当前时间戳（测试注入）

    Returns:
        签名有效返回 True
    """
    if not signature_header or not secret:
        return False

    timestamp, signatures = _parse_signature_header(signature_header)
    if timestamp is None or not signatures:
        logger.warning("Webhook signature header missing timestamp or v1 entry")
        return False

    current_time = int(time.time()) if now is None else now
    if abs(current_time - timestamp) > tolerance:
        logger.warning(f"Webhook timestamp outside tolerance: {current_time - timestamp}s")
        return False

    expected = compute_signature(payload, timestamp, secret)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)
