import asyncio
from datetime import datetime, time, timedelta

import pytest

from alarm_engine import AlarmEscalationEngine, AlarmPhase, evaluate_deadline_check
from conftest import FakeDevice, FakePresenter, FakeScheduler
from reminder_presenter import ALARM_CHANNEL, ALARM_NOTIFICATION_ID, CHECK_CHANNEL
from schedule_analyzer import ActiveWindow, Goal, ProgressSnapshot, ReminderState
from trigger_scheduler import SNOOZE_SLOT

DEADLINES = [time(11, 15), time(15, 45), time(20, 0)]


def make_state(total=0, **overrides):
    goal = Goal(3, 800)
    return ReminderState(goal, ActiveWindow(7, 20), ProgressSnapshot(total, 800), list(DEADLINES), **overrides)


class Harness:
    def __init__(self, clock, events, state, presenter=None, audio=None, vibration=None, **options):
        self.events = events
        self.state = state
        self.presenter = presenter or FakePresenter(events)
        self.audio = audio or FakeDevice('audio', events)
        self.vibration = vibration or FakeDevice('vibration', events)
        self.scheduler = FakeScheduler()
        self.engine = AlarmEscalationEngine(
            self.read_state, self.presenter, self.audio, self.vibration, self.scheduler,
            clock=clock, **options,
        )

    def read_state(self):
        self.events.append(('read',))
        if isinstance(self.state, Exception):
            raise self.state
        return self.state


@pytest.fixture
def behind_clock(clock):
    clock.set(11, 16, 30)
    return clock


def test_evaluate_counts_due_deadlines():
    decision = evaluate_deadline_check(make_state(800), datetime(2026, 10, 19, 16, 0))

    assert decision.behind
    assert decision.due_intervals == 2
    assert decision.target_interval == 2
    assert decision.deadline == time(15, 45)
    assert decision.target_volume == 1600


def test_evaluate_on_track_before_any_deadline():
    decision = evaluate_deadline_check(make_state(0), datetime(2026, 10, 19, 9, 0))

    assert not decision.behind
    assert decision.due_intervals == 0


@pytest.mark.asyncio
async def test_on_track_check_is_silent(clock, events):
    clock.set(13, 5)
    h = Harness(clock, events, make_state(800))

    await h.engine.on_deadline_check()

    assert h.engine.last_outcome == AlarmPhase.ON_TRACK
    assert h.engine.phase == AlarmPhase.IDLE
    assert [e for e in events if e[0] == 'start'] == []
    assert h.presenter.of('notify') == []
    assert events[-1] == ('stop_foreground',)


@pytest.mark.asyncio
async def test_placeholder_shown_before_state_is_read(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0))

    await h.engine.on_deadline_check()

    assert events[0][0] == 'foreground'
    assert events[0][1].channel is CHECK_CHANNEL
    assert events[1] == ('read',)
    await h.engine.stop()


@pytest.mark.asyncio
async def test_behind_check_escalates(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0))

    await h.engine.on_deadline_check()

    assert h.engine.phase == AlarmPhase.ESCALATING
    alarm = h.presenter.foreground
    assert alarm.channel is ALARM_CHANNEL
    assert alarm.title == "Deadline missed!"
    assert alarm.body == "Bottle 1 was due by 11:15. You've had 0ml of 800ml so far."
    assert alarm.full_screen and alarm.ongoing and alarm.silent
    assert ('start', 'audio1') in events
    assert ('start', 'vibration1') in events

    await h.engine.stop()

    assert h.engine.last_outcome == AlarmPhase.DISMISSED
    assert h.audio.started[0].stopped and h.vibration.started[0].stopped
    assert ('cancel', ALARM_NOTIFICATION_ID) in events


@pytest.mark.asyncio
async def test_new_check_tears_down_previous_run_first(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0))

    await h.engine.on_deadline_check()
    behind_clock.advance(minutes=1)
    await h.engine.on_deadline_check()

    assert events.index(('stop', 'audio1')) < events.index(('start', 'audio2'))
    assert events.index(('stop', 'vibration1')) < events.index(('start', 'vibration2'))
    # the old session is released before the new placeholder goes up
    second_placeholder = [i for i, e in enumerate(events) if e[0] == 'foreground'][2]
    assert events.index(('stop', 'audio1')) < second_placeholder

    starts = len([e for e in events if e[0] == 'start'])
    stops = len([e for e in events if e[0] == 'stop'])
    assert starts - stops == 2
    await h.engine.stop()


@pytest.mark.asyncio
async def test_foreground_refused_posts_one_fallback_notification(behind_clock, events):
    presenter = FakePresenter(events, fail_foreground=True)
    h = Harness(behind_clock, events, make_state(0), presenter=presenter)

    await h.engine.on_deadline_check()

    notifications = presenter.of('notify')
    assert len(notifications) == 1
    assert notifications[0][1].channel is ALARM_CHANNEL
    assert "Bottle 1 was due by 11:15" in notifications[0][1].body
    assert not notifications[0][1].silent
    assert h.engine.last_outcome == AlarmPhase.FALLBACK
    assert [e for e in events if e[0] == 'start'] == []


@pytest.mark.asyncio
async def test_foreground_refused_and_on_track_posts_nothing(clock, events):
    clock.set(13, 5)
    presenter = FakePresenter(events, fail_foreground=True)
    h = Harness(clock, events, make_state(800), presenter=presenter)

    await h.engine.on_deadline_check()

    assert presenter.of('notify') == []
    assert h.engine.last_outcome == AlarmPhase.ON_TRACK


@pytest.mark.asyncio
async def test_failed_upgrade_falls_back_to_notification(behind_clock, events):
    presenter = FakePresenter(events, fail_upgrade=True)
    h = Harness(behind_clock, events, make_state(0), presenter=presenter)

    await h.engine.on_deadline_check()

    assert len(presenter.of('notify')) == 1
    assert h.engine.last_outcome == AlarmPhase.FALLBACK
    assert h.engine.phase == AlarmPhase.IDLE
    assert presenter.foreground is None


@pytest.mark.asyncio
async def test_missing_audio_keeps_vibration_running(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0), audio=FakeDevice('audio', events, fail=True))

    await h.engine.on_deadline_check()

    run = h.engine.run
    assert h.engine.phase == AlarmPhase.ESCALATING
    assert not run.sound_on
    assert run.vibrate_on
    assert run.auto_dismiss_task is None
    await h.engine.stop()


@pytest.mark.asyncio
async def test_alarm_without_sound_or_vibration_dismisses_itself(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0, alarm_sound=False, alarm_vibrate=False),
                silent_auto_dismiss=timedelta(milliseconds=10))

    await h.engine.on_deadline_check()
    assert h.engine.phase == AlarmPhase.ESCALATING

    await asyncio.sleep(0.1)

    assert h.engine.phase == AlarmPhase.IDLE
    assert h.engine.last_outcome == AlarmPhase.DISMISSED
    assert events[-1] == ('stop_foreground',)


@pytest.mark.asyncio
async def test_failing_devices_count_as_silent(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0),
                audio=FakeDevice('audio', events, fail=True),
                vibration=FakeDevice('vibration', events, fail=True),
                silent_auto_dismiss=timedelta(milliseconds=10))

    await h.engine.on_deadline_check()
    await asyncio.sleep(0.1)

    assert h.engine.last_outcome == AlarmPhase.DISMISSED


@pytest.mark.asyncio
async def test_unanswered_alarm_times_out(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0), auto_timeout=timedelta(milliseconds=10))

    await h.engine.on_deadline_check()
    await asyncio.sleep(0.1)

    assert h.engine.phase == AlarmPhase.IDLE
    assert h.engine.last_outcome == AlarmPhase.TIMED_OUT
    assert h.audio.started[0].stopped
    assert h.vibration.started[0].stopped


@pytest.mark.asyncio
async def test_snooze_rearms_check_ten_minutes_out(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0))

    await h.engine.on_deadline_check()
    await h.engine.snooze()

    assert h.engine.last_outcome == AlarmPhase.SNOOZED
    assert h.scheduler.armed == [(SNOOZE_SLOT, datetime(2026, 10, 19, 11, 26, 30))]
    assert h.audio.started[0].stopped
    assert ('cancel', ALARM_NOTIFICATION_ID) in events


@pytest.mark.asyncio
async def test_opening_the_app_silences_alarm(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0))

    await h.engine.on_deadline_check()
    await h.engine.on_app_opened()

    assert h.engine.phase == AlarmPhase.IDLE
    assert h.engine.last_outcome == AlarmPhase.DISMISSED
    assert h.vibration.started[0].stopped


@pytest.mark.asyncio
async def test_notifications_disabled_dismisses_check(behind_clock, events):
    h = Harness(behind_clock, events, make_state(0, notifications_enabled=False))

    await h.engine.on_deadline_check()

    assert h.engine.last_outcome == AlarmPhase.DISMISSED
    assert [e for e in events if e[0] == 'start'] == []


@pytest.mark.asyncio
async def test_unreadable_state_dismisses_check(behind_clock, events):
    h = Harness(behind_clock, events, OSError("disk gone"))

    await h.engine.on_deadline_check()

    assert h.engine.last_outcome == AlarmPhase.DISMISSED
    assert h.engine.phase == AlarmPhase.IDLE


@pytest.mark.asyncio
async def test_first_bottle_logged_then_check_is_on_track(clock, events):
    # 3 x 800ml, deadlines 11:15/15:45/20:00, one bottle at 12:00
    h = Harness(clock, events, make_state(800))
    clock.set(13, 5)

    await h.engine.on_deadline_check()

    assert h.engine.last_outcome == AlarmPhase.ON_TRACK
    assert h.presenter.of('notify') == []
