"""Per-run stage state and the progress/status event broadcaster."""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, List, Optional

logger = logging.getLogger("thoughtgraph.events")


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (StageStatus.PENDING, StageStatus.RUNNING)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StageExecutionState:
    stage_id: str
    status: StageStatus = StageStatus.PENDING
    progress: int = 0
    error: Optional[str] = None
    attempts: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def copy(self) -> "StageExecutionState":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "stage_id": self.stage_id,
            "status": self.status.value,
            "progress": self.progress,
            "error": self.error,
            "attempts": self.attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True)
class StateChangeEvent:
    run_id: str
    stage_id: str
    status: StageStatus
    progress: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": "stage",
            "run_id": self.run_id,
            "stage_id": self.stage_id,
            "status": self.status.value,
            "progress": self.progress,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


class EventBroadcaster:
    """Fan-out of a run's state-change events to any number of subscribers.

    Every subscriber sees the full ordered history, including events published
    before it subscribed, and its iterator ends once the broadcaster is closed.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._history: List[StateChangeEvent] = []
        self._subscribers: List[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def history(self) -> List[StateChangeEvent]:
        return list(self._history)

    def publish(self, event: StateChangeEvent) -> None:
        if self._closed:
            raise RuntimeError(f"Event stream for {self.run_id} is closed")
        self._history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)

    async def subscribe(self) -> AsyncIterator[StateChangeEvent]:
        # History is copied and the queue registered in one step, so nothing
        # published in between can be missed or duplicated.
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._history:
            queue.put_nowait(event)
        if self._closed:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)

        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
