"""
平台费计算 - 纯函数，无副作用
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any

from domain.common.exceptions import InvalidAmountException, InvalidPercentageException
from domain.payment.entity import to_decimal

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Currencies displayed with a symbol instead of the ISO code
CURRENCY_SYMBOLS = {
    "ZMW": "K",
    "ZMK": "K",
}


def _exact_precision(*values: Decimal) -> int:
    """足以精确表示乘积、分位取整与减法结果的位数"""
    digits = 0
    for v in values:
        t = v.as_tuple()
        digits += len(t.digits) + abs(t.exponent)
    return digits + 4


@dataclass(frozen=True)
class FeeBreakdown:
    """platform_fee + net_amount == gross_amount（精确成立）"""

    gross_amount: Decimal
    fee_percentage: Decimal
    platform_fee: Decimal
    net_amount: Decimal


def calculate_fee(gross_amount: Any, fee_percentage: Any) -> FeeBreakdown:
    """
    计算平台费与净额

    费用按 2 位小数四舍五入（ROUND_HALF_UP）；净额为 gross - fee，不单独取整。
    """
    try:
        gross = to_decimal(gross_amount)
    except (InvalidOperation, ValueError):
        raise InvalidAmountException(gross_amount)
    if not gross.is_finite() or gross <= 0:
        raise InvalidAmountException(gross_amount)

    try:
        pct = to_decimal(fee_percentage)
    except (InvalidOperation, ValueError):
        raise InvalidPercentageException(fee_percentage)
    if not pct.is_finite() or pct < 0 or pct > HUNDRED:
        raise InvalidPercentageException(fee_percentage)

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _exact_precision(gross, pct))
        fee = (gross * pct / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
        net = gross - fee
    return FeeBreakdown(
        gross_amount=gross,
        fee_percentage=pct,
        platform_fee=fee,
        net_amount=net,
    )


def format_amount(amount: Any, currency: str) -> str:
    """展示用金额：ZMW → K50.00，其他币种 → 'USD 50.00'"""
    value = to_decimal(amount)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _exact_precision(value))
        value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    code = (currency or "").upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{value:,.2f}"
    return f"{code} {value:,.2f}".strip()
