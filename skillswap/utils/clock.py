"""Injectable time source.

상태 전이의 시간 검증(미래 시작 여부 등)을 테스트에서 결정적으로 만들기 위해
서비스와 상태 머신은 ``datetime.now``를 직접 호출하지 않고 ``Clock``을 주입받는다.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주하고, aware datetime은 UTC로 변환"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """현재 시각 (UTC, tz-aware)"""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
