from datetime import datetime, timedelta

import pytest

from errors import ForegroundUnavailable, ResourceUnavailable
from persistent_storage import DrinkLogStore, SettingsStore
from timer_manager import TimerFacility


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0, second: int = 0):
        self.now = self.now.replace(hour=hour, minute=minute, second=second)

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakePresenter:
    def __init__(self, events=None, fail_foreground=False, fail_upgrade=False):
        self.events = events if events is not None else []
        self.fail_foreground = fail_foreground
        self.fail_upgrade = fail_upgrade
        self.foreground = None

    def start_foreground(self, presentation):
        if self.fail_foreground or (self.fail_upgrade and self.foreground is not None):
            raise ForegroundUnavailable("refused")
        self.foreground = presentation
        self.events.append(('foreground', presentation))

    def stop_foreground(self):
        self.foreground = None
        self.events.append(('stop_foreground',))

    def notify(self, presentation):
        self.events.append(('notify', presentation))

    def cancel(self, notification_id):
        self.events.append(('cancel', notification_id))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


class FakeHandle:
    def __init__(self, name, events):
        self.name = name
        self.events = events
        self.stopped = False

    def stop(self):
        self.stopped = True
        self.events.append(('stop', self.name))


class FakeDevice:
    """Stands in for both the audio and the vibration service"""

    def __init__(self, kind, events, fail=False):
        self.kind = kind
        self.events = events
        self.fail = fail
        self.started = []

    def _start(self):
        if self.fail:
            raise ResourceUnavailable(f"no {self.kind}")
        handle = FakeHandle(f"{self.kind}{len(self.started) + 1}", self.events)
        self.started.append(handle)
        self.events.append(('start', handle.name))
        return handle

    def start_loop(self, category='alarm'):
        return self._start()

    def start_pattern(self, pattern=None):
        return self._start()


class FakeScheduler:
    def __init__(self):
        self.armed = []

    def arm_deadline_check(self, slot_key, fire_at):
        self.armed.append((slot_key, fire_at))


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 10, 0))


@pytest.fixture
def events():
    return []


@pytest.fixture
def presenter(events):
    return FakePresenter(events)


@pytest.fixture
def audio(events):
    return FakeDevice('audio', events)


@pytest.fixture
def vibration(events):
    return FakeDevice('vibration', events)


@pytest.fixture
def settings(tmp_path):
    return SettingsStore(str(tmp_path))


@pytest.fixture
def drink_log(tmp_path, clock):
    return DrinkLogStore(str(tmp_path), clock=clock)


@pytest.fixture
def timers(clock):
    return TimerFacility(clock=clock, inexact_slack_seconds=0)
