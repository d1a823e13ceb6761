from datetime import datetime, time, timedelta
from typing import Callable, List, Optional

import persistent_storage as keys
from alarm_engine import AlarmEscalationEngine
from deadline_computer import format_deadlines, resolve_deadlines, set_deadline
from persistent_storage import DrinkLogStore, SettingsStore
from reminder_presenter import reminder_presentation
from schedule_analyzer import (
    ActiveWindow,
    Goal,
    ProgressSnapshot,
    ReminderState,
    ScheduleDecision,
    ScheduledTrigger,
    analyze,
    at_time_of_day,
)
from time_service import time_service
from timer_manager import BackgroundTaskQueue, TimerFacility
from trigger_scheduler import TEST_ALARM_SLOT, TriggerScheduler

TEST_ALARM_DELAY = timedelta(seconds=10)


class ReminderService:
    """Entry point for every event that can change the reminder schedule.

    Each mutation writes through to the stores and then fully recomputes and
    re-arms the schedule. Timer callbacks land here too and always read fresh
    state.
    """

    def __init__(self, settings: SettingsStore, drink_log: DrinkLogStore, timers: TimerFacility,
                 presenter, audio_service, vibration_service,
                 clock: Callable[[], datetime] = None, **engine_options):
        self.settings = settings
        self.drink_log = drink_log
        self.timers = timers
        self.presenter = presenter
        self.clock = clock or time_service.now
        self.tasks = BackgroundTaskQueue(timers)
        self.scheduler = TriggerScheduler(
            timers,
            self.tasks,
            on_reminder=self.handle_passive_reminder,
            on_deadline_check=self.handle_deadline_check,
            on_safety_net=self.run_safety_net,
            show_action=self.open_app,
        )
        self.engine = AlarmEscalationEngine(
            self.read_state, presenter, audio_service, vibration_service, self.scheduler,
            clock=self.clock, **engine_options,
        )

    # -- State --

    def goal(self) -> Goal:
        return Goal(self.settings.get_int(keys.INTERVAL_COUNT), self.settings.get_int(keys.INTERVAL_VOLUME))

    def window(self) -> ActiveWindow:
        return ActiveWindow(self.settings.get_int(keys.ACTIVE_HOURS_START),
                            self.settings.get_int(keys.ACTIVE_HOURS_END))

    def deadlines(self) -> List[time]:
        window = self.window()
        return resolve_deadlines(self.settings.get(keys.BOTTLE_DEADLINES), self.goal().interval_count,
                                 window.start_hour, window.end_hour)

    def read_state(self) -> ReminderState:
        goal = self.goal()
        return ReminderState(
            goal=goal,
            window=self.window(),
            progress=ProgressSnapshot(self.drink_log.today_total(), goal.interval_volume),
            deadlines=self.deadlines(),
            notifications_enabled=self.settings.get_bool(keys.NOTIFICATIONS_ENABLED),
            alarm_sound=self.settings.get_bool(keys.ALARM_SOUND),
            alarm_vibrate=self.settings.get_bool(keys.ALARM_VIBRATE),
        )

    # -- Scheduling --

    def reschedule(self) -> Optional[ScheduleDecision]:
        state = self.read_state()
        if not state.notifications_enabled:
            self.scheduler.cancel_all()
            return None

        decision = analyze(state.goal, state.window, state.progress, state.deadlines, self.clock())
        self.scheduler.apply(decision)
        return decision

    # -- Drink log --

    def log_drink(self, volume: Optional[int] = None) -> int:
        entry_id = self.drink_log.insert(volume if volume is not None else self.goal().interval_volume)
        print(f"💧 Logged drink #{entry_id}")
        self.reschedule()
        return entry_id

    def delete_drink(self, entry_id: int) -> bool:
        deleted = self.drink_log.delete(entry_id)
        if deleted:
            self.reschedule()
        return deleted

    # -- Settings --

    def _set_and_reset_deadlines(self, key: str, value: int):
        self.settings.set(key, value)
        self.settings.remove(keys.BOTTLE_DEADLINES)
        self.reschedule()

    def set_interval_count(self, count: int):
        self._set_and_reset_deadlines(keys.INTERVAL_COUNT, count)

    def set_interval_volume(self, volume: int):
        self._set_and_reset_deadlines(keys.INTERVAL_VOLUME, volume)

    def set_active_hours_start(self, hour: int) -> bool:
        """Move the window start; refused unless it stays before the end hour"""
        if hour >= self.window().end_hour:
            print(f"⚠️ Active hours start {hour}:00 must be before the end hour, ignoring")
            return False
        self._set_and_reset_deadlines(keys.ACTIVE_HOURS_START, hour)
        return True

    def set_active_hours_end(self, hour: int) -> bool:
        """Move the window end; refused unless it stays after the start hour"""
        if hour <= self.window().start_hour:
            print(f"⚠️ Active hours end {hour}:00 must be after the start hour, ignoring")
            return False
        self._set_and_reset_deadlines(keys.ACTIVE_HOURS_END, hour)
        return True

    def set_deadline(self, index: int, new_time: time):
        current = self.deadlines()
        if not 0 <= index < len(current):
            return
        # Edited deadlines stay inside the active window
        window = self.window()
        new_time = max(window.start, min(window.end, new_time))
        self.settings.set(keys.BOTTLE_DEADLINES, format_deadlines(set_deadline(current, index, new_time)))
        self.reschedule()

    def reset_deadlines(self):
        self.settings.remove(keys.BOTTLE_DEADLINES)
        self.reschedule()

    def set_notifications_enabled(self, enabled: bool):
        self.settings.set(keys.NOTIFICATIONS_ENABLED, enabled)
        self.reschedule()

    def set_alarm_sound(self, enabled: bool):
        self.settings.set(keys.ALARM_SOUND, enabled)

    def set_alarm_vibrate(self, enabled: bool):
        self.settings.set(keys.ALARM_VIBRATE, enabled)

    def set_dark_mode(self, option: str):
        self.settings.set(keys.DARK_MODE, option)

    # -- Timer callbacks --

    def _remaining_intervals(self, state: ReminderState) -> int:
        remaining_volume = state.goal.daily_target - state.progress.today_total
        return -(-remaining_volume // state.goal.interval_volume)

    def _should_remind(self, state: ReminderState, now: datetime) -> bool:
        return (state.notifications_enabled
                and state.window.contains(now.time())
                and state.progress.today_total < state.goal.daily_target)

    async def handle_passive_reminder(self, trigger: ScheduledTrigger):
        state = self.read_state()
        if not self._should_remind(state, self.clock()):
            return

        print(f"🔔 Reminder for bottle {trigger.target_interval}{' (behind)' if trigger.is_behind else ''}")
        self.presenter.notify(reminder_presentation(
            self._remaining_intervals(state), trigger.deadline, trigger.is_behind, trigger.target_interval,
        ))

    async def handle_deadline_check(self):
        await self.engine.on_deadline_check()

    async def run_safety_net(self):
        """Periodic backstop: re-arm from fresh state, then remind, in case one-shot timers were dropped.

        Re-arming here is what carries the schedule over into the next day.
        """
        self.reschedule()
        state = self.read_state()
        now = self.clock()
        if not self._should_remind(state, now):
            return

        next_deadline = None
        is_behind = False
        target = 0
        if state.deadlines:
            next_index = min(state.progress.completed_intervals, len(state.deadlines) - 1)
            next_deadline = state.deadlines[next_index]
            is_behind = now > at_time_of_day(now, next_deadline)
            target = next_index + 1

        print("🛟 Safety-net reminder")
        self.presenter.notify(reminder_presentation(
            self._remaining_intervals(state), next_deadline, is_behind, target,
        ))

    # -- App lifecycle --

    async def open_app(self):
        """Opening the app cancels any running alarm and re-evaluates the schedule"""
        await self.engine.on_app_opened()
        self.reschedule()

    async def snooze_alarm(self):
        await self.engine.snooze()

    async def stop_alarm(self):
        await self.engine.stop()

    def fire_test_alarm(self):
        """Run the full deadline-check chain shortly from now"""
        self.scheduler.arm_deadline_check(TEST_ALARM_SLOT, self.clock() + TEST_ALARM_DELAY)

    async def start(self):
        self.reschedule()
        await self.timers.start()

    async def stop(self):
        await self.engine.shutdown()
        await self.timers.stop()
