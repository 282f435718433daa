from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List


@dataclass(frozen=True)
class ExecutionEvent:
    execution_id: str
    agent_id: str
    event_type: str
    payload: str
    created_at: datetime


Subscriber = Callable[[ExecutionEvent], None]


class EventBus:
    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, execution_id: str, agent_id: str, event_type: str, payload: str = "") -> ExecutionEvent:
        event = ExecutionEvent(
            execution_id=execution_id,
            agent_id=agent_id,
            event_type=event_type,
            payload=payload,
            created_at=datetime.now(timezone.utc),
        )
        for subscriber in self._subscribers:
            subscriber(event)
        return event
