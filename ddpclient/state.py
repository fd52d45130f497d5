from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from shared.utils import parse_ddp_date


@dataclass(frozen=True)
class Credential:
    user_id: str
    token: str
    token_expires: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: Any) -> "Credential":
        """
        Build from a login result:
        {"id": "u1", "token": "t1", "tokenExpires": {"$date": 1700000000000}}
        """
        if not isinstance(result, dict):
            raise ValueError(f"login result must be an object, got {type(result).__name__}")
        user_id = result.get("id")
        token = result.get("token")
        if not isinstance(user_id, str) or not isinstance(token, str):
            raise ValueError("login result lacks 'id' or 'token'")
        return cls(user_id=user_id, token=token, token_expires=parse_ddp_date(result.get("tokenExpires")))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.token_expires is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.token_expires

    def __repr__(self) -> str:
        return f"Credential(user_id={self.user_id!r}, token_expires={self.token_expires!r})"


@dataclass
class SubscriptionRecord:
    subscription_id: str
    name: str
    params: Tuple[Any, ...] = ()


@dataclass
class SubscriptionTable:
    subs: Dict[str, SubscriptionRecord] = field(default_factory=dict)

    def add(self, record: SubscriptionRecord) -> None:
        self.subs[record.subscription_id] = record

    def remove(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        return self.subs.pop(subscription_id, None)

    def list_sorted(self) -> List[SubscriptionRecord]:
        return sorted(self.subs.values(), key=lambda r: int(r.subscription_id))

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self.subs

    def __len__(self) -> int:
        return len(self.subs)
