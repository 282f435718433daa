import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from agent_dashboard.domain.agents import AgentRecord

SIMULATED_ERROR = "Simulated execution error"
RESULT_TEXT = "Agent workflow executed successfully"


class TaskFailure(Exception):
    """The agent task ran to the end but did not succeed."""


class ExecutionBackend(Protocol):
    async def run(self, agent: AgentRecord) -> Dict[str, Any]:
        """Run one attempt of the agent's task and return its structured output.

        Raise ``TaskFailure`` for an expected unsuccessful outcome; any other
        exception is treated as a crash of the backend.
        """
        ...


class SimulatedBackend:
    """Stand-in task: waits a random delay, then succeeds with ``success_rate``."""

    def __init__(
        self,
        delay_min_sec: float = 2.0,
        delay_max_sec: float = 7.0,
        success_rate: float = 0.9,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if delay_min_sec < 0 or delay_max_sec < delay_min_sec:
            raise ValueError("invalid execution delay window")
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be within [0, 1]")
        self._delay_min_sec = delay_min_sec
        self._delay_max_sec = delay_max_sec
        self._success_rate = success_rate
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def run(self, agent: AgentRecord) -> Dict[str, Any]:
        await self._sleep(self._rng.uniform(self._delay_min_sec, self._delay_max_sec))
        if self._rng.random() >= self._success_rate:
            raise TaskFailure(SIMULATED_ERROR)
        return {
            "tasksCompleted": self._rng.randint(1, 5),
            "dataProcessed": f"{self._rng.randint(100, 1099)} records",
            "result": RESULT_TEXT,
        }
