from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    name: str
    email: str
    avatar: str
    created_at: datetime
    updated_at: datetime
