import asyncio
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Callable, Optional

from reminder_presenter import ALARM_NOTIFICATION_ID, alarm_presentation, checking_presentation
from schedule_analyzer import ReminderState, at_time_of_day
from time_service import time_service
from trigger_scheduler import SNOOZE_SLOT

AUTO_TIMEOUT = timedelta(minutes=5)
SILENT_AUTO_DISMISS = timedelta(seconds=30)
SNOOZE_DELAY = timedelta(minutes=10)


class AlarmPhase(Enum):
    IDLE = 'idle'
    CHECKING = 'checking'
    ON_TRACK = 'on_track'
    ESCALATING = 'escalating'
    DISMISSED = 'dismissed'
    TIMED_OUT = 'timed_out'
    SNOOZED = 'snoozed'
    FALLBACK = 'fallback'  # Degraded path posted a one-shot notification


@dataclass(frozen=True)
class AlarmDecision:
    behind: bool
    completed_intervals: int
    due_intervals: int
    target_interval: int = 0
    deadline: Optional[time] = None
    today_total: int = 0
    target_volume: int = 0


def evaluate_deadline_check(state: ReminderState, now: datetime) -> AlarmDecision:
    """Decide whether the user is behind at the moment a deadline check fires"""
    completed = state.progress.completed_intervals
    due = 0
    for index, deadline in enumerate(state.deadlines):
        if at_time_of_day(now, deadline) <= now:
            due = index + 1

    if completed >= due:
        return AlarmDecision(behind=False, completed_intervals=completed, due_intervals=due)

    target = completed + 1
    return AlarmDecision(
        behind=True,
        completed_intervals=completed,
        due_intervals=due,
        target_interval=target,
        deadline=state.deadlines[completed],
        today_total=state.progress.today_total,
        target_volume=target * state.goal.interval_volume,
    )


@dataclass
class AlarmRunState:
    phase: AlarmPhase
    started_at: datetime
    sound_on: bool = False
    vibrate_on: bool = False
    audio: object = None
    vibration: object = None
    timeout_task: Optional[asyncio.Task] = None
    auto_dismiss_task: Optional[asyncio.Task] = None
    decision: Optional[AlarmDecision] = None

    def release(self):
        """Stop sound and vibration and cancel pending timers"""
        if self.audio is not None:
            try:
                self.audio.stop()
            except Exception as e:
                print(f"Error releasing alarm audio: {e}")
            self.audio = None
        if self.vibration is not None:
            try:
                self.vibration.stop()
            except Exception as e:
                print(f"Error cancelling vibration: {e}")
            self.vibration = None
        self.sound_on = False
        self.vibrate_on = False

        current = asyncio.current_task()
        for task in (self.timeout_task, self.auto_dismiss_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self.timeout_task = None
        self.auto_dismiss_task = None


class AlarmEscalationEngine:
    """Runs deadline checks and owns the single active alarm run.

    A new run always tears the previous one down first, so at most one
    audio/vibration session exists. Every check re-reads live state through
    `read_state`; nothing carried on the trigger is trusted.
    """

    def __init__(self, read_state: Callable[[], ReminderState], presenter, audio_service, vibration_service,
                 scheduler, clock: Callable[[], datetime] = None,
                 auto_timeout: timedelta = AUTO_TIMEOUT,
                 silent_auto_dismiss: timedelta = SILENT_AUTO_DISMISS,
                 snooze_delay: timedelta = SNOOZE_DELAY):
        self.read_state = read_state
        self.presenter = presenter
        self.audio_service = audio_service
        self.vibration_service = vibration_service
        self.scheduler = scheduler
        self.clock = clock or time_service.now
        self.auto_timeout = auto_timeout
        self.silent_auto_dismiss = silent_auto_dismiss
        self.snooze_delay = snooze_delay
        self.run: Optional[AlarmRunState] = None
        self.last_outcome: Optional[AlarmPhase] = None
        self._lock = asyncio.Lock()

    @property
    def phase(self) -> AlarmPhase:
        return self.run.phase if self.run else AlarmPhase.IDLE

    async def on_deadline_check(self):
        async with self._lock:
            self._teardown()

            # The silent placeholder must be up before any state read
            try:
                self.presenter.start_foreground(checking_presentation())
            except Exception as e:
                print(f"⚠️ Foreground alarm unavailable ({e}), using fallback notification")
                self._fallback_check()
                return

            self.run = AlarmRunState(phase=AlarmPhase.CHECKING, started_at=self.clock())
            try:
                state = self.read_state()
            except Exception as e:
                print(f"❌ Deadline check could not read progress: {e}")
                self._finish(AlarmPhase.DISMISSED)
                return

            if not state.notifications_enabled:
                self._finish(AlarmPhase.DISMISSED)
                return

            decision = evaluate_deadline_check(state, self.clock())
            if not decision.behind:
                print(f"✅ Deadline check: {decision.completed_intervals}/{decision.due_intervals} done, on track")
                self._finish(AlarmPhase.ON_TRACK)
                return

            self._escalate(state, decision)

    def _escalate(self, state: ReminderState, decision: AlarmDecision):
        run = self.run
        run.phase = AlarmPhase.ESCALATING
        run.decision = decision

        try:
            # Looping audio is played by the run itself, so the presentation stays silent
            self.presenter.start_foreground(alarm_presentation(
                decision.target_interval, decision.deadline, decision.today_total,
                decision.target_volume, silent=True,
            ))
        except Exception as e:
            print(f"⚠️ Could not upgrade alarm presentation ({e}), using fallback notification")
            self._finish(AlarmPhase.FALLBACK)
            self._post_fallback(decision)
            return

        print(f"🚨 Behind schedule: bottle {decision.target_interval} was due by {decision.deadline}")

        if state.alarm_sound:
            try:
                run.audio = self.audio_service.start_loop('alarm')
                run.sound_on = True
            except Exception as e:
                print(f"🔇 Alarm sound unavailable: {e}")
        if state.alarm_vibrate:
            try:
                run.vibration = self.vibration_service.start_pattern()
                run.vibrate_on = True
            except Exception as e:
                print(f"📴 Vibration unavailable: {e}")

        loop = asyncio.get_running_loop()
        if not run.sound_on and not run.vibrate_on:
            run.auto_dismiss_task = loop.create_task(
                self._dismiss_after(run, self.silent_auto_dismiss, AlarmPhase.DISMISSED))
        run.timeout_task = loop.create_task(self._dismiss_after(run, self.auto_timeout, AlarmPhase.TIMED_OUT))

    async def _dismiss_after(self, run: AlarmRunState, delay: timedelta, phase: AlarmPhase):
        await asyncio.sleep(delay.total_seconds())
        async with self._lock:
            if self.run is run:
                print(f"⏱️ Alarm auto-dismissed ({phase.value})")
                self._finish(phase)

    def _fallback_check(self):
        """Degraded path: decide from fresh state and post a one-shot notification"""
        try:
            state = self.read_state()
        except Exception as e:
            print(f"❌ Fallback deadline check could not read progress: {e}")
            return

        if not state.notifications_enabled:
            return

        decision = evaluate_deadline_check(state, self.clock())
        if not decision.behind:
            self.last_outcome = AlarmPhase.ON_TRACK
            return

        self.last_outcome = AlarmPhase.FALLBACK
        self._post_fallback(decision)

    def _post_fallback(self, decision: AlarmDecision):
        try:
            self.presenter.notify(alarm_presentation(
                decision.target_interval, decision.deadline, decision.today_total, decision.target_volume,
            ))
        except Exception as e:
            print(f"❌ Fallback alarm notification failed: {e}")

    def _teardown(self):
        if self.run is not None:
            self.run.release()
            self.run = None

    def _finish(self, phase: AlarmPhase):
        self._teardown()
        self.last_outcome = phase
        try:
            self.presenter.stop_foreground()
        except Exception as e:
            print(f"Error clearing alarm presentation: {e}")

    async def snooze(self):
        async with self._lock:
            self._finish(AlarmPhase.SNOOZED)
            self.presenter.cancel(ALARM_NOTIFICATION_ID)
            fire_at = self.clock() + self.snooze_delay
            self.scheduler.arm_deadline_check(SNOOZE_SLOT, fire_at)
            print(f"😴 Alarm snoozed until {fire_at.strftime('%H:%M')}")

    async def stop(self):
        async with self._lock:
            if self.run is not None:
                self._finish(AlarmPhase.DISMISSED)
            else:
                self.presenter.stop_foreground()
            self.presenter.cancel(ALARM_NOTIFICATION_ID)

    async def on_app_opened(self):
        """Opening the app silences any alarm, independent of the Stop action"""
        await self.stop()

    async def shutdown(self):
        async with self._lock:
            if self.run is not None:
                self._finish(AlarmPhase.DISMISSED)
