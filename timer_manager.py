import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from errors import AuthorizationDenied
from time_service import time_service

TimerCallback = Callable[[], Awaitable[None]]


class TimerClass(Enum):
    ALARM_CLOCK = 'alarm_clock'  # Always exact, exempt from deferral
    EXACT = 'exact'              # Exact, needs authorization
    INEXACT = 'inexact'          # Idle-tolerant, may fire late


@dataclass
class Timer:
    slot_key: str
    fire_at: datetime
    callback: TimerCallback
    timer_class: TimerClass
    show_action: Optional[Callable] = None


class TimerFacility:
    """One-shot wake-ups keyed by slot, fired from a polling loop.

    Registering a slot that is already armed replaces it. Callbacks run with a
    grace period; a callback that overruns it is abandoned and logged.
    """

    def __init__(self, clock: Callable[[], datetime] = None, allow_exact: bool = True,
                 allow_alarm_clock: bool = True, tick_seconds: float = 5.0,
                 grace_seconds: float = 30.0, inexact_slack_seconds: int = 300):
        self.clock = clock or time_service.now
        self.allow_exact = allow_exact
        self.allow_alarm_clock = allow_alarm_clock
        self.tick_seconds = tick_seconds
        self.grace_seconds = grace_seconds
        self.inexact_slack_seconds = inexact_slack_seconds
        self.timers: Dict[str, Timer] = {}
        self._running = False
        self._task = None

    def can_schedule_exact(self) -> bool:
        return self.allow_exact

    def register(self, slot_key: str, fire_at: datetime, callback: TimerCallback,
                 timer_class: TimerClass = TimerClass.INEXACT, show_action: Optional[Callable] = None):
        """Arm a one-shot timer; raises AuthorizationDenied for refused classes"""
        if timer_class == TimerClass.EXACT and not self.allow_exact:
            raise AuthorizationDenied(f"Exact timers not permitted for '{slot_key}'")
        if timer_class == TimerClass.ALARM_CLOCK and not self.allow_alarm_clock:
            raise AuthorizationDenied(f"Alarm-clock timers not permitted for '{slot_key}'")

        if timer_class == TimerClass.INEXACT and self.inexact_slack_seconds > 0:
            fire_at = fire_at + timedelta(seconds=random.randint(0, self.inexact_slack_seconds))

        self.timers[slot_key] = Timer(
            slot_key=slot_key,
            fire_at=fire_at,
            callback=callback,
            timer_class=timer_class,
            show_action=show_action,
        )

    def cancel(self, slot_key: str) -> bool:
        return self.timers.pop(slot_key, None) is not None

    def get(self, slot_key: str) -> Optional[Timer]:
        return self.timers.get(slot_key)

    def next_alarm_clock(self) -> Optional[Timer]:
        """Earliest armed alarm-clock timer; its show action is what the user opens"""
        alarm_clocks = [t for t in self.timers.values() if t.timer_class == TimerClass.ALARM_CLOCK]
        return min(alarm_clocks, key=lambda t: t.fire_at, default=None)

    def due_timers(self) -> List[Timer]:
        now = self.clock()
        return sorted((t for t in self.timers.values() if t.fire_at <= now), key=lambda t: t.fire_at)

    async def fire_due(self) -> int:
        """Fire every timer whose instant has passed; returns how many fired"""
        due = self.due_timers()
        for timer in due:
            # One-shot: disarm before running so the callback may re-arm the slot
            if self.timers.get(timer.slot_key) is timer:
                del self.timers[timer.slot_key]
            await self._run_callback(timer)
        return len(due)

    async def _run_callback(self, timer: Timer):
        try:
            await asyncio.wait_for(timer.callback(), timeout=self.grace_seconds)
        except asyncio.TimeoutError:
            print(f"⏱️ Timer '{timer.slot_key}' overran its {self.grace_seconds:.0f}s grace period")
        except Exception as e:
            print(f"❌ Error in timer '{timer.slot_key}': {e}")

    async def _timer_loop(self):
        while self._running:
            await self.fire_due()
            try:
                await asyncio.sleep(self.tick_seconds)
            except asyncio.CancelledError:
                print("Timer loop cancelled")
                break

    async def start(self):
        if not self._running:
            self._running = True
            self._task = asyncio.create_task(self._timer_loop())
            print("⏰ Timer facility started")

    async def stop(self):
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await asyncio.wait([self._task], timeout=2.0)
            except asyncio.TimeoutError:
                print("Warning: Timer loop didn't cancel within timeout")
        self._task = None


@dataclass
class PeriodicTask:
    name: str
    interval: timedelta
    flex: timedelta
    callback: TimerCallback


class BackgroundTaskQueue:
    """Periodic and one-shot background work on top of the inexact timer class.

    Periodic tasks run somewhere within the last `flex` of each interval.
    """

    SLOT_PREFIX = 'task:'

    def __init__(self, timers: TimerFacility):
        self.timers = timers
        self.periodic: Dict[str, PeriodicTask] = {}
        self._one_shot_counter = 0

    def _slot(self, name: str) -> str:
        return f"{self.SLOT_PREFIX}{name}"

    def _next_run(self, task: PeriodicTask) -> datetime:
        flex_seconds = int(task.flex.total_seconds())
        early = random.randint(0, flex_seconds) if flex_seconds > 0 else 0
        return self.timers.clock() + task.interval - timedelta(seconds=early)

    def enqueue_unique_periodic(self, name: str, interval: timedelta, flex: timedelta, callback: TimerCallback):
        """Register a named periodic task; an existing one keeps its next run time"""
        self.periodic[name] = PeriodicTask(name=name, interval=interval, flex=flex, callback=callback)
        if not self.is_scheduled(name):
            self.timers.register(self._slot(name), self._next_run(self.periodic[name]),
                                 self._periodic_runner(name), TimerClass.INEXACT)

    def _periodic_runner(self, name: str) -> TimerCallback:
        async def run():
            task = self.periodic.get(name)
            if task is None:
                return
            try:
                await task.callback()
            finally:
                if name in self.periodic:
                    self.timers.register(self._slot(name), self._next_run(self.periodic[name]), run, TimerClass.INEXACT)
        return run

    def enqueue_one_shot(self, delay: timedelta, callback: TimerCallback, name: Optional[str] = None) -> str:
        if name is None:
            self._one_shot_counter += 1
            name = f"one_shot_{self._one_shot_counter}"
        self.timers.register(self._slot(name), self.timers.clock() + delay, callback, TimerClass.INEXACT)
        return name

    def cancel(self, name: str) -> bool:
        self.periodic.pop(name, None)
        return self.timers.cancel(self._slot(name))

    def is_scheduled(self, name: str) -> bool:
        return self.timers.get(self._slot(name)) is not None
