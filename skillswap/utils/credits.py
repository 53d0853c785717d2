from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str, None]


def quantize_credits(value: Number, places: int = 2) -> Decimal:
    """크레딧 금액을 소수점 ``places`` 자리로 반올림 (ROUND_HALF_UP)"""
    if value is None:
        value = 0
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def hours_between(start, end) -> Decimal:
    """두 시각 사이의 시간(hour)을 Decimal로 반환"""
    seconds = Decimal(str((end - start).total_seconds()))
    return seconds / Decimal(3600)
