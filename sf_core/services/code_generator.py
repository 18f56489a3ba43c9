"""
编码生成器

- 订单号：前缀 + 毫秒时间戳(base36) + 4 位随机，极难碰撞但不保证唯一
- 礼品卡兑换码：排除易混淆字符（0/O/1/I）的固定长度码，需配合黑名单查重
- 兑换令牌：UUID4，碰撞概率可忽略
"""
import secrets
import string
import time
import uuid
from typing import Awaitable, Callable, Optional

from sf_core.utils.errors import ExhaustedRetriesError
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase
GIFT_CARD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_MAX_ATTEMPTS = 10


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def new_order_number(prefix: str = "MF", now_ms: Optional[int] = None) -> str:
    """生成订单号，格式 PREFIX-<时间戳 base36>-<4 位随机>"""
    timestamp = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(4))
    return f"{prefix}-{to_base36(timestamp)}-{suffix}"


def new_gift_card_code(length: int = 14) -> str:
    return "".join(secrets.choice(GIFT_CARD_ALPHABET) for _ in range(length))


def new_redemption_token() -> str:
    return str(uuid.uuid4())


async def generate_unique(
    generator: Callable[[], str],
    is_taken: Callable[[str], Awaitable[bool]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    kind: str = "code",
) -> str:
    """
    生成在持久层中尚未使用的编码

    查重只是优化，最终以数据库唯一约束为准。

    Args:
        generator: 候选编码生成函数
        is_taken: 异步查重函数，已存在返回 True
        max_attempts: 最大尝试次数
        kind: 编码类型（用于日志和错误信息）

    Returns:
        未被占用的编码

    Raises:
        ExhaustedRetriesError: 连续 max_attempts 次均命中已占用编码
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        candidate = generator()
        if not await is_taken(candidate):
            if attempt > 1:
                logger.info(f"{kind} 编码第 {attempt} 次生成成功")
            return candidate
        logger.warning(f"{kind} 编码冲突，重试 {attempt}/{max_attempts}")

    logger.error(f"{kind} 编码生成重试耗尽", attempts=max_attempts)
    raise ExhaustedRetriesError(kind=kind, attempts=max_attempts)
