import asyncio
from dataclasses import dataclass
from datetime import time
from enum import Enum
from typing import Dict, Optional, Tuple

from nicegui import ui

from errors import ForegroundUnavailable
from vibration_service import CHANNEL_VIBRATION_PATTERN, connected_clients

REMINDER_NOTIFICATION_ID = 1001
ALARM_NOTIFICATION_ID = 1002

ACTION_SNOOZE = 'snooze'
ACTION_STOP = 'stop'
ACTION_OPEN = 'open'


class Priority(Enum):
    LOW = 'low'
    DEFAULT = 'default'
    HIGH = 'high'


@dataclass(frozen=True)
class Channel:
    id: str
    name: str
    importance: Priority
    sound: Optional[str] = None  # audio category played once on post
    vibration: Tuple[int, ...] = ()


REMINDER_CHANNEL = Channel('drink_reminders', 'Drink reminders', Priority.DEFAULT)
ALARM_CHANNEL = Channel('deadline_alarms', 'Deadline alarms', Priority.HIGH,
                        sound='alarm', vibration=CHANNEL_VIBRATION_PATTERN)
CHECK_CHANNEL = Channel('deadline_alarm_check', 'Deadline checks', Priority.LOW)


@dataclass(frozen=True)
class Presentation:
    notification_id: int
    channel: Channel
    priority: Priority
    title: str
    body: str
    actions: Tuple[str, ...] = ()
    ongoing: bool = False
    full_screen: bool = False
    silent: bool = False
    open_action: str = ACTION_OPEN


def _bottles(count: int) -> str:
    return f"{count} bottle{'s' if count > 1 else ''}"


def reminder_presentation(remaining_intervals: int, next_deadline: Optional[time] = None,
                          is_behind: bool = False, target_interval: int = 0) -> Presentation:
    if remaining_intervals <= 0:
        title = "Great job!"
        body = "You've met your goal. Keep it up!"
        priority = Priority.DEFAULT
    elif next_deadline is not None and is_behind:
        title = "You're behind schedule!"
        body = (f"Bottle {target_interval} was due by {next_deadline.strftime('%H:%M')}. "
                f"{_bottles(remaining_intervals)} remaining today.")
        priority = Priority.HIGH
    elif next_deadline is not None and target_interval > 0:
        title = "Time to drink water!"
        body = (f"Bottle {target_interval} is due by {next_deadline.strftime('%H:%M')}. "
                f"{_bottles(remaining_intervals)} remaining today.")
        priority = Priority.DEFAULT
    else:
        title = "Time to drink water!"
        body = f"You still need {_bottles(remaining_intervals)} more today. Stay hydrated!"
        priority = Priority.DEFAULT

    return Presentation(REMINDER_NOTIFICATION_ID, REMINDER_CHANNEL, priority, title, body)


def checking_presentation() -> Presentation:
    """Silent placeholder shown while a deadline check reads fresh progress"""
    return Presentation(ALARM_NOTIFICATION_ID, CHECK_CHANNEL, Priority.LOW,
                        "Checking deadline...", "", silent=True)


def alarm_presentation(target_interval: int, deadline: Optional[time], today_total: int,
                       target_volume: int, silent: bool = False) -> Presentation:
    deadline_text = deadline.strftime('%H:%M') if deadline else ""
    body = (f"Bottle {target_interval} was due by {deadline_text}. "
            f"You've had {today_total}ml of {target_volume}ml so far.")
    return Presentation(
        ALARM_NOTIFICATION_ID, ALARM_CHANNEL, Priority.HIGH, "Deadline missed!", body,
        actions=(ACTION_SNOOZE, ACTION_STOP), ongoing=True, full_screen=True, silent=silent,
    )


NOTIFY_TYPES = {Priority.LOW: 'info', Priority.DEFAULT: 'info', Priority.HIGH: 'warning'}


class NiceGuiPresenter:
    """Shows reminders as toasts and the foreground alarm as a bound banner"""

    def __init__(self, audio_service=None, vibration_service=None, foreground_allowed: bool = True):
        self.audio_service = audio_service
        self.vibration_service = vibration_service
        self.foreground_allowed = foreground_allowed
        self.foreground: Optional[Presentation] = None
        # Reactive UI data - bound to the alarm banner on the page
        self.ui_data: Dict[str, object] = {
            'alarm_visible': False,
            'alarm_title': '',
            'alarm_body': '',
            'alarm_actions': False,
        }

    def notify(self, presentation: Presentation):
        """Post a one-shot notification with its channel's sound and vibration"""
        clients = connected_clients()
        message = f"{presentation.title} {presentation.body}".strip()
        notify_type = 'negative' if presentation.channel is ALARM_CHANNEL else NOTIFY_TYPES[presentation.priority]

        if not clients:
            print(f"🔔 [{presentation.channel.id}] {message}")
        for client in clients:
            with client:
                ui.notify(message, type=notify_type, position='top-right',
                          timeout=0 if presentation.priority == Priority.HIGH else 5000,
                          close_button=True)

        if presentation.silent:
            return
        if presentation.channel.sound and self.audio_service:
            asyncio.get_running_loop().create_task(self.audio_service.play_once(presentation.channel.sound))
        if presentation.channel.vibration and self.vibration_service:
            self.vibration_service.pulse_once(presentation.channel.vibration)

    def start_foreground(self, presentation: Presentation):
        """Enter or update the long-running alarm presentation"""
        if not self.foreground_allowed:
            raise ForegroundUnavailable("Foreground alarm is disabled")

        self.foreground = presentation
        self.ui_data['alarm_visible'] = presentation.channel is not CHECK_CHANNEL
        self.ui_data['alarm_title'] = presentation.title
        self.ui_data['alarm_body'] = presentation.body
        self.ui_data['alarm_actions'] = bool(presentation.actions)
        print(f"🚨 Foreground: {presentation.title} {presentation.body}".rstrip())

    def stop_foreground(self):
        self.foreground = None
        self.ui_data['alarm_visible'] = False
        self.ui_data['alarm_title'] = ''
        self.ui_data['alarm_body'] = ''
        self.ui_data['alarm_actions'] = False

    def cancel(self, notification_id: int):
        if self.foreground and self.foreground.notification_id == notification_id:
            self.stop_foreground()
