from __future__ import annotations

from dataclasses import dataclass

"""SendQuota model: per-user daily cap on outbound sends.

sent_today is reset to 0 at the start of each calendar day by the quota store
(or whatever job owns the daily reset); this model only reads it.
"""

__all__ = [
    "SendQuota",
]


@dataclass(frozen=True)
class SendQuota:
    daily_limit: int
    sent_today: int = 0

    def __post_init__(self) -> None:
        if self.sent_today < 0:
            raise ValueError(f"sent_today must be >= 0 (got {self.sent_today})")
        if self.daily_limit < 0:
            raise ValueError(f"daily_limit must be >= 0 (got {self.daily_limit})")

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.sent_today)

    @property
    def can_send(self) -> bool:
        return self.remaining > 0
