import os
from datetime import time

from dotenv import load_dotenv
from nicegui import ui, app

from audio_service import AudioService
from persistent_storage import DARK_MODE, DrinkLogStore, SettingsStore
from reminder_presenter import NiceGuiPresenter
from reminder_service import ReminderService
from time_service import time_service
from timer_manager import TimerFacility
from vibration_service import VibrationService

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class HydrationReminderApp:
    def __init__(self):
        # Configuration from .env
        self.data_dir = os.getenv('DATA_DIR', 'data')
        self.audio_directory = os.getenv('AUDIO_DIRECTORY', os.path.join(self.data_dir, 'audio'))
        self.audio_player = os.getenv('AUDIO_PLAYER', 'afplay')
        self.allow_exact_timers = _env_flag('ALLOW_EXACT_TIMERS', True)
        self.allow_foreground_alarm = _env_flag('ALLOW_FOREGROUND_ALARM', True)
        self.timer_tick_seconds = float(os.getenv('TIMER_TICK_SECONDS', 5))
        self.trigger_grace_seconds = float(os.getenv('TRIGGER_GRACE_SECONDS', 30))
        self.inexact_slack_seconds = int(os.getenv('INEXACT_SLACK_SECONDS', 300))
        time_service.sync_url = os.getenv('TIME_SYNC_URL') or None

        self.audio_service = AudioService(self.audio_directory, self.audio_player)
        self.vibration_service = VibrationService()
        self.presenter = NiceGuiPresenter(self.audio_service, self.vibration_service,
                                          foreground_allowed=self.allow_foreground_alarm)
        self.timers = TimerFacility(
            allow_exact=self.allow_exact_timers,
            tick_seconds=self.timer_tick_seconds,
            grace_seconds=self.trigger_grace_seconds,
            inexact_slack_seconds=self.inexact_slack_seconds,
        )
        self.service = ReminderService(
            SettingsStore(self.data_dir),
            DrinkLogStore(self.data_dir),
            self.timers,
            self.presenter,
            self.audio_service,
            self.vibration_service,
        )

        # Reactive UI data - these will automatically update the UI when changed
        self.ui_data = {
            'progress_display': '',
            'schedule_display': '',
            'deadlines_display': '',
            'next_alarm_display': '',
        }

    async def initialize_app(self):
        """Sync time, then arm the schedule from stored state"""
        print("🚀 Starting app initialization...")
        await time_service.ensure_time_sync()
        await self.service.start()
        print("✅ App initialization complete")

    def _update_ui_data(self):
        state = self.service.read_state()
        goal = state.goal
        self.ui_data['progress_display'] = (
            f"Today: {state.progress.today_total}/{goal.daily_target}ml "
            f"({state.progress.completed_intervals}/{goal.interval_count} bottles)"
        )
        self.ui_data['deadlines_display'] = ' | '.join(
            f"#{i + 1} {d.strftime('%H:%M')}" for i, d in enumerate(state.deadlines))

        pending = sorted(self.timers.timers.values(), key=lambda t: t.fire_at)
        if pending:
            upcoming = ', '.join(f"{t.slot_key}@{t.fire_at.strftime('%H:%M')}" for t in pending[:4])
            self.ui_data['schedule_display'] = f"Next: {upcoming}"
        else:
            self.ui_data['schedule_display'] = "Nothing scheduled"

        next_alarm = self.timers.next_alarm_clock()
        self.ui_data['next_alarm_display'] = (
            f"⏰ Next alarm check {next_alarm.fire_at.strftime('%H:%M')}" if next_alarm else "⏰ No alarm armed")

    async def _open_next_alarm(self):
        """Open the app through the next alarm-clock timer's show action"""
        next_alarm = self.timers.next_alarm_clock()
        if next_alarm and next_alarm.show_action:
            await next_alarm.show_action()

    def create_ui(self):
        """Create the main UI"""
        ui.page_title('Hydration Reminder')
        ui.dark_mode({'dark': True, 'light': False}.get(self.service.settings.get(DARK_MODE)))

        with ui.card().classes('w-full max-w-3xl mx-auto p-6'):
            ui.label('💧 Hydration Reminder').classes('text-3xl font-bold text-center mb-6')

            # Alarm banner, bound to the presenter's reactive state
            with ui.card().classes('w-full mb-4 p-4 bg-red-100').bind_visibility_from(
                    self.presenter.ui_data, 'alarm_visible'):
                ui.label().classes('text-xl font-semibold').bind_text_from(self.presenter.ui_data, 'alarm_title')
                ui.label().bind_text_from(self.presenter.ui_data, 'alarm_body')
                with ui.row().classes('gap-2').bind_visibility_from(self.presenter.ui_data, 'alarm_actions'):
                    ui.button('Snooze 10 min', on_click=self.service.snooze_alarm).classes('bg-yellow-500')
                    ui.button('Stop', on_click=self.service.stop_alarm).classes('bg-red-500')

            with ui.card().classes('w-full mb-4 p-4'):
                ui.label().classes('text-lg font-mono').bind_text_from(self.ui_data, 'progress_display')
                ui.label().classes('text-sm text-gray-600').bind_text_from(self.ui_data, 'deadlines_display')
                ui.label().classes('text-sm text-gray-600').bind_text_from(self.ui_data, 'schedule_display')
                with ui.row().classes('items-center gap-2'):
                    ui.label().classes('text-sm').bind_text_from(self.ui_data, 'next_alarm_display')
                    ui.button('Open', on_click=self._open_next_alarm).props('flat dense')
                with ui.row().classes('gap-2 mt-2'):
                    ui.button('Log a bottle', on_click=self._log_drink)
                    ui.button('Test alarm', on_click=self.service.fire_test_alarm).classes('bg-gray-500')

            self._create_log_panel()
            self._create_settings_panel()

        self._update_ui_data()
        ui.timer(1.0, self._update_ui_data)

    @ui.refreshable
    def _create_log_panel(self):
        with ui.card().classes('w-full mb-4 p-4'):
            ui.label("Today's log").classes('text-xl font-semibold mb-2')
            entries = self.service.drink_log.today_entries()
            if not entries:
                ui.label('No drinks logged yet').classes('text-gray-500')
            for entry in entries:
                with ui.row().classes('items-center gap-4'):
                    ui.label(f"{entry.logged_at.strftime('%H:%M')}  {entry.volume}ml").classes('font-mono')
                    ui.button(icon='delete', on_click=lambda e, entry_id=entry.id: self._delete_drink(entry_id)) \
                        .props('flat dense')

    def _log_drink(self):
        self.service.log_drink()
        self._create_log_panel.refresh()

    def _delete_drink(self, entry_id: int):
        self.service.delete_drink(entry_id)
        self._create_log_panel.refresh()

    def _create_settings_panel(self):
        service = self.service
        state = service.read_state()

        with ui.card().classes('w-full p-4'):
            ui.label('⚙️ Settings').classes('text-xl font-semibold mb-2')
            with ui.row().classes('gap-4'):
                ui.number('Bottles per day', value=state.goal.interval_count, min=1, max=10, precision=0,
                          on_change=lambda e: e.value and service.set_interval_count(int(e.value)))
                ui.number('Bottle size (ml)', value=state.goal.interval_volume, min=50, step=50, precision=0,
                          on_change=lambda e: e.value and service.set_interval_volume(int(e.value)))
            with ui.row().classes('gap-4'):
                ui.number('Active from (h)', value=state.window.start_hour, min=0, max=23, precision=0,
                          on_change=lambda e: e.value is not None and service.set_active_hours_start(int(e.value)))
                ui.number('Active until (h)', value=state.window.end_hour, min=0, max=23, precision=0,
                          on_change=lambda e: e.value is not None and service.set_active_hours_end(int(e.value)))

            ui.switch('Reminders', value=state.notifications_enabled,
                      on_change=lambda e: service.set_notifications_enabled(e.value))
            ui.switch('Alarm sound', value=state.alarm_sound, on_change=lambda e: service.set_alarm_sound(e.value))
            ui.switch('Alarm vibration', value=state.alarm_vibrate,
                      on_change=lambda e: service.set_alarm_vibrate(e.value))
            ui.select({'system': 'System', 'light': 'Light', 'dark': 'Dark'}, label='Theme',
                      value=service.settings.get(DARK_MODE), on_change=lambda e: service.set_dark_mode(e.value))

            ui.label('Deadlines').classes('font-medium mt-2')
            with ui.row().classes('gap-2'):
                for index, deadline in enumerate(state.deadlines):
                    ui.input(f'Bottle {index + 1}', value=deadline.strftime('%H:%M'),
                             on_change=lambda e, i=index: self._on_deadline_change(i, e.value)).props('dense')
            ui.button('Reset deadlines', on_click=service.reset_deadlines).props('flat')

    def _on_deadline_change(self, index: int, value: str):
        try:
            new_time = time.fromisoformat(value)
        except ValueError:
            return
        self.service.set_deadline(index, new_time)


# Global app instance
hydration_app = HydrationReminderApp()


@ui.page('/')
async def index():
    hydration_app.create_ui()
    # Opening the app silences any running alarm
    await hydration_app.service.open_app()


# Startup and shutdown handlers
async def on_startup():
    """App startup handler"""
    try:
        await hydration_app.initialize_app()
    except Exception as e:
        print(f"❌ Error initializing app: {e}")


async def on_shutdown():
    """App shutdown handler"""
    try:
        await hydration_app.service.stop()
        print("App shutdown complete")
    except Exception as e:
        print(f"Error during shutdown: {e}")

app.on_startup(on_startup)
app.on_shutdown(on_shutdown)

if __name__ in {"__main__", "__mp_main__"}:
    ui.run(
        title='Hydration Reminder',
        port=int(os.getenv('PORT', 8080)),
        show=True,
        reload=False
    )
