from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from typing import List, Optional

MAX_REMINDER_SLOTS = 10
MAX_DEADLINE_SLOTS = 10

BEHIND_FIRST_REMINDER = timedelta(minutes=1)
BEHIND_REPEAT = timedelta(minutes=30)
ON_TRACK_OFFSETS = (timedelta(minutes=30), timedelta(minutes=10))
MIN_REMINDER_SPACING = timedelta(minutes=10)
DEADLINE_CHECK_BUFFER = timedelta(seconds=90)


@dataclass(frozen=True)
class Goal:
    interval_count: int
    interval_volume: int

    @property
    def daily_target(self) -> int:
        return self.interval_count * self.interval_volume


@dataclass(frozen=True)
class ActiveWindow:
    start_hour: int
    end_hour: int

    @property
    def start(self) -> time:
        return time(self.start_hour, 0)

    @property
    def end(self) -> time:
        return time(self.end_hour, 0)

    def contains(self, t: time) -> bool:
        return self.start <= t <= self.end


@dataclass(frozen=True)
class ProgressSnapshot:
    today_total: int
    interval_volume: int

    @property
    def completed_intervals(self) -> int:
        if self.interval_volume <= 0:
            return 0
        return self.today_total // self.interval_volume


class TriggerKind(Enum):
    PASSIVE_REMINDER = 'passive_reminder'
    DEADLINE_CHECK = 'deadline_check'


@dataclass(frozen=True)
class ScheduledTrigger:
    fire_time: datetime
    kind: TriggerKind
    slot: int
    is_behind: bool = False
    target_interval: int = 0
    deadline: Optional[time] = None


@dataclass
class ReminderState:
    """Everything a scheduling or alarm decision reads, fetched fresh each time"""
    goal: Goal
    window: ActiveWindow
    progress: ProgressSnapshot
    deadlines: List[time]
    notifications_enabled: bool = True
    alarm_sound: bool = True
    alarm_vibrate: bool = True


@dataclass
class ScheduleDecision:
    triggers: List[ScheduledTrigger] = field(default_factory=list)
    goal_met: bool = False
    is_behind: bool = False
    next_interval_index: Optional[int] = None
    next_deadline: Optional[time] = None

    @property
    def target_interval(self) -> int:
        return self.next_interval_index + 1 if self.next_interval_index is not None else 0

    @property
    def reminders(self) -> List[ScheduledTrigger]:
        return [t for t in self.triggers if t.kind == TriggerKind.PASSIVE_REMINDER]

    @property
    def deadline_checks(self) -> List[ScheduledTrigger]:
        return [t for t in self.triggers if t.kind == TriggerKind.DEADLINE_CHECK]


def at_time_of_day(now: datetime, t: time) -> datetime:
    """The instant on now's calendar day at time-of-day t"""
    return datetime.combine(now.date(), t, tzinfo=now.tzinfo)


def _behind_reminder_times(now: datetime, deadlines: List[time], next_index: int, window: ActiveWindow) -> List[datetime]:
    future = [d for d in deadlines[next_index + 1:] if at_time_of_day(now, d) > now]
    urgent_end = at_time_of_day(now, future[0] if future else window.end)

    times = [now + BEHIND_FIRST_REMINDER]
    next_time = now + BEHIND_REPEAT
    while now < next_time < urgent_end:
        times.append(next_time)
        next_time += BEHIND_REPEAT
    return times


def _on_track_reminder_times(now: datetime, deadline_at: datetime) -> List[datetime]:
    minutes_until = int((deadline_at - now).total_seconds() // 60)
    candidates = [now + timedelta(minutes=minutes_until // 2)]
    candidates.extend(deadline_at - offset for offset in ON_TRACK_OFFSETS)

    candidates = sorted({c for c in candidates if now < c <= deadline_at})

    spaced = []
    for candidate in candidates:
        if not spaced or candidate - spaced[-1] >= MIN_REMINDER_SPACING:
            spaced.append(candidate)
    return spaced


def analyze(goal: Goal, window: ActiveWindow, progress: ProgressSnapshot,
            deadlines: List[time], now: datetime) -> ScheduleDecision:
    """Classify progress against the deadlines and list the triggers to arm.

    Pure: identical inputs always produce an identical decision.
    """
    if progress.today_total >= goal.daily_target:
        return ScheduleDecision(goal_met=True)

    if now.time() > window.end or not deadlines:
        return ScheduleDecision()

    next_index = max(0, min(progress.completed_intervals, len(deadlines) - 1))
    next_deadline = deadlines[next_index]
    deadline_at = at_time_of_day(now, next_deadline)
    is_behind = now > deadline_at
    target_interval = next_index + 1

    if is_behind:
        reminder_times = _behind_reminder_times(now, deadlines, next_index, window)
    else:
        reminder_times = _on_track_reminder_times(now, deadline_at)

    triggers = [
        ScheduledTrigger(
            fire_time=fire_time,
            kind=TriggerKind.PASSIVE_REMINDER,
            slot=slot,
            is_behind=is_behind,
            target_interval=target_interval,
            deadline=next_deadline,
        )
        for slot, fire_time in enumerate(reminder_times[:MAX_REMINDER_SLOTS])
    ]

    for index, deadline in enumerate(deadlines[:MAX_DEADLINE_SLOTS]):
        check_deadline_at = at_time_of_day(now, deadline)
        if check_deadline_at > now:
            triggers.append(ScheduledTrigger(
                fire_time=check_deadline_at + DEADLINE_CHECK_BUFFER,
                kind=TriggerKind.DEADLINE_CHECK,
                slot=index,
                target_interval=index + 1,
                deadline=deadline,
            ))

    return ScheduleDecision(
        triggers=triggers,
        is_behind=is_behind,
        next_interval_index=next_index,
        next_deadline=next_deadline,
    )
