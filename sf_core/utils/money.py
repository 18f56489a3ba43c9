"""
金额工具

Stripe 金额以最小货币单位（分）传输，库内统一使用两位小数的 Decimal。
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def quantize(value: Any) -> Decimal:
    """规范化为两位小数"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_decimal(cents: Any) -> Decimal:
    """分 → 元

    Raises:
        ValueError: 非有限或非整数金额
    """
    if cents is None or cents == "":
        return Decimal("0.00")
    try:
        value = Decimal(str(cents))
    except InvalidOperation:
        raise ValueError(f"invalid amount: {cents!r}")
    if not value.is_finite():
        raise ValueError(f"amount must be finite: {cents!r}")
    if value != value.to_integral_value():
        raise ValueError(f"amount in cents must be integral: {cents!r}")
    try:
        return quantize(value / 100)
    except ArithmeticError:
        # 超出 Decimal 上下文精度
        raise ValueError(f"amount out of range: {cents!r}")


def format_eur(amount: Decimal) -> str:
    return f"€{quantize(amount):.2f}"
