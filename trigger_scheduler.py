from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from errors import AuthorizationDenied
from schedule_analyzer import (
    MAX_DEADLINE_SLOTS,
    MAX_REMINDER_SLOTS,
    ScheduleDecision,
    ScheduledTrigger,
    TriggerKind,
)
from timer_manager import BackgroundTaskQueue, TimerClass, TimerFacility

SAFETY_NET_TASK = 'hydration_safety_net'
SAFETY_NET_INTERVAL = timedelta(hours=1)
SAFETY_NET_FLEX = timedelta(minutes=15)

SNOOZE_SLOT = 'deadline_check:snooze'
TEST_ALARM_SLOT = 'deadline_check:test'


def reminder_slot(index: int) -> str:
    return f"reminder:{index}"


def deadline_check_slot(index: int) -> str:
    return f"deadline_check:{index}"


class TriggerScheduler:
    """Reconciles a schedule decision against the timer facility.

    Every call to `apply` cancels all slots first and re-arms from scratch;
    there is no incremental update path.
    """

    def __init__(self, timers: TimerFacility, tasks: BackgroundTaskQueue,
                 on_reminder: Callable[[ScheduledTrigger], Awaitable[None]],
                 on_deadline_check: Callable[[], Awaitable[None]],
                 on_safety_net: Callable[[], Awaitable[None]],
                 show_action: Optional[Callable] = None):
        self.timers = timers
        self.tasks = tasks
        self.on_reminder = on_reminder
        self.on_deadline_check = on_deadline_check
        self.on_safety_net = on_safety_net
        self.show_action = show_action

    def cancel_triggers(self):
        for i in range(MAX_REMINDER_SLOTS):
            self.timers.cancel(reminder_slot(i))
        for i in range(MAX_DEADLINE_SLOTS):
            self.timers.cancel(deadline_check_slot(i))

    def cancel_all(self):
        """Drop every trigger and the safety net; used when notifications are off"""
        self.cancel_triggers()
        self.timers.cancel(SNOOZE_SLOT)
        self.timers.cancel(TEST_ALARM_SLOT)
        self.tasks.cancel(SAFETY_NET_TASK)
        print("🔕 All reminder triggers cancelled")

    def apply(self, decision: ScheduleDecision):
        self.cancel_triggers()

        for trigger in decision.triggers:
            if trigger.kind == TriggerKind.DEADLINE_CHECK:
                self.arm_deadline_check(deadline_check_slot(trigger.slot), trigger.fire_time)
            else:
                self._arm_reminder(trigger)

        self.tasks.enqueue_unique_periodic(SAFETY_NET_TASK, SAFETY_NET_INTERVAL, SAFETY_NET_FLEX, self.on_safety_net)

        print(f"⏰ Armed {len(decision.reminders)} reminder(s) and {len(decision.deadline_checks)} deadline check(s)"
              f"{' (behind schedule)' if decision.is_behind else ''}")

    def _arm_reminder(self, trigger: ScheduledTrigger):
        slot_key = reminder_slot(trigger.slot)

        async def fire():
            await self.on_reminder(trigger)

        timer_class = TimerClass.EXACT if self.timers.can_schedule_exact() else TimerClass.INEXACT
        try:
            self.timers.register(slot_key, trigger.fire_time, fire, timer_class)
        except AuthorizationDenied:
            print(f"⚠️ Exact timer refused for {slot_key}, using inexact timer")
            self.timers.register(slot_key, trigger.fire_time, fire, TimerClass.INEXACT)

    def arm_deadline_check(self, slot_key: str, fire_at: datetime):
        """Arm a deadline check on the most reliable timer class available"""
        try:
            self.timers.register(slot_key, fire_at, self.on_deadline_check, TimerClass.ALARM_CLOCK,
                                 show_action=self.show_action)
            return
        except AuthorizationDenied:
            print(f"⚠️ Alarm-clock timer refused for {slot_key}, downgrading")

        timer_class = TimerClass.EXACT if self.timers.can_schedule_exact() else TimerClass.INEXACT
        try:
            self.timers.register(slot_key, fire_at, self.on_deadline_check, timer_class)
        except AuthorizationDenied:
            self.timers.register(slot_key, fire_at, self.on_deadline_check, TimerClass.INEXACT)
