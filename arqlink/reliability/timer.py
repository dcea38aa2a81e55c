"""
Retransmission timers

- AdaptiveTimeout: RTO that halves toward a floor on timely ACKs and
  doubles toward a ceiling on timeout
- RetransmissionTimer: countdown timers keyed by sequence number (or
  WINDOW_TIMER for protocols with a single window timer)
"""

import heapq
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

DEFAULT_TIMEOUT = 1.0
MIN_TIMEOUT = 0.1
MAX_TIMEOUT = 5.0

# Key for the single timer used by Stop-and-Wait and Go-Back-N
WINDOW_TIMER = -1


@dataclass
class AdaptiveTimeout:
    """
    Bounded retransmission timeout.

    Attributes:
        initial: Starting RTO in seconds
        min_timeout: Floor the RTO never drops below
        max_timeout: Ceiling the RTO never exceeds
        current: Current RTO
    """
    initial: float = DEFAULT_TIMEOUT
    min_timeout: float = MIN_TIMEOUT
    max_timeout: float = MAX_TIMEOUT
    current: float = field(init=False)

    def __post_init__(self):
        if not 0 < self.min_timeout <= self.max_timeout:
            raise ValueError(
                f"Invalid timeout bounds [{self.min_timeout}, {self.max_timeout}]")
        self.current = self._clamp(self.initial)

    def _clamp(self, value: float) -> float:
        return max(self.min_timeout, min(self.max_timeout, value))

    def on_timely_ack(self):
        self.current = self._clamp(self.current / 2)

    def on_timeout(self):
        self.current = self._clamp(self.current * 2)

    def reset(self):
        self.current = self._clamp(self.initial)


class RetransmissionTimer:
    """
    Countdown timers backed by a min-heap.

    Restarting a key bumps its generation so the older heap entry is
    skipped when it surfaces.
    """

    def __init__(self,
                 timeout: Optional[AdaptiveTimeout] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout or AdaptiveTimeout()
        self.clock = clock

        self._deadlines: Dict[int, Tuple[float, int]] = {}  # key -> (deadline, generation)
        self._heap: List[Tuple[float, int, int]] = []       # (deadline, generation, key)
        self._generation = 0

    def now(self) -> float:
        return self.clock()

    def start(self, key: int, now: Optional[float] = None) -> float:
        """(Re)start the timer for key with the current RTO. Returns the deadline."""
        if now is None:
            now = self.clock()
        self._generation += 1
        deadline = now + self.timeout.current
        self._deadlines[key] = (deadline, self._generation)
        heapq.heappush(self._heap, (deadline, self._generation, key))
        return deadline

    def cancel(self, key: int):
        self._deadlines.pop(key, None)

    def clear(self):
        self._deadlines.clear()
        self._heap.clear()

    def is_running(self, key: int) -> bool:
        return key in self._deadlines

    @property
    def active_count(self) -> int:
        return len(self._deadlines)

    def expired(self, now: Optional[float] = None) -> List[int]:
        """Pop and return every key whose deadline has passed, earliest first."""
        if now is None:
            now = self.clock()
        keys = []
        while self._heap and self._heap[0][0] <= now:
            deadline, generation, key = heapq.heappop(self._heap)
            if self._deadlines.get(key) != (deadline, generation):
                continue
            del self._deadlines[key]
            keys.append(key)
        return keys

    def next_deadline(self) -> Optional[float]:
        while self._heap:
            deadline, generation, key = self._heap[0]
            if self._deadlines.get(key) == (deadline, generation):
                return deadline
            heapq.heappop(self._heap)
        return None

    def time_until_next(self, now: Optional[float] = None) -> Optional[float]:
        deadline = self.next_deadline()
        if deadline is None:
            return None
        if now is None:
            now = self.clock()
        return max(0.0, deadline - now)
