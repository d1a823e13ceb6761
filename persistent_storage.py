import json
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, asdict
from pathlib import Path

from time_service import time_service

# Settings keys
INTERVAL_COUNT = 'daily_goal_bottles'
INTERVAL_VOLUME = 'bottle_size_ml'
ACTIVE_HOURS_START = 'active_hours_start'
ACTIVE_HOURS_END = 'active_hours_end'
NOTIFICATIONS_ENABLED = 'notifications_enabled'
ALARM_SOUND = 'alarm_sound'
ALARM_VIBRATE = 'alarm_vibrate'
BOTTLE_DEADLINES = 'bottle_deadlines'
DARK_MODE = 'dark_mode'

DEFAULT_SETTINGS = {
    INTERVAL_COUNT: 3,
    INTERVAL_VOLUME: 800,
    ACTIVE_HOURS_START: 7,
    ACTIVE_HOURS_END: 20,
    NOTIFICATIONS_ENABLED: True,
    ALARM_SOUND: True,
    ALARM_VIBRATE: True,
    DARK_MODE: 'system',
}


def _read_json(file_path: Path, default):
    """Safely read JSON file"""
    try:
        with open(file_path, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except json.JSONDecodeError as e:
        print(f"Error reading {file_path}: {e}")
        return default


def _write_json(file_path: Path, data):
    """Safely write JSON file"""
    try:
        # Write to temp file first, then rename for atomic operation
        temp_file = file_path.with_suffix('.tmp')
        with open(temp_file, 'w') as f:
            json.dump(data, f, indent=2, default=str)
        temp_file.replace(file_path)
    except OSError as e:
        print(f"Error writing {file_path}: {e}")


class SettingsStore:
    """Key-value settings in a JSON file; absent keys fall back to defaults"""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.settings_file = self.data_dir / "settings.json"

    def _load(self) -> Dict[str, Any]:
        data = _read_json(self.settings_file, {})
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, DEFAULT_SETTINGS.get(key, default))

    def get_int(self, key: str) -> int:
        value = self.get(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            print(f"⚠️ Invalid value for {key}: {value!r}, using default")
            return DEFAULT_SETTINGS[key]

    def get_bool(self, key: str) -> bool:
        return bool(self.get(key))

    def set(self, key: str, value: Any):
        data = self._load()
        data[key] = value
        _write_json(self.settings_file, data)

    def remove(self, key: str):
        data = self._load()
        if key in data:
            del data[key]
            _write_json(self.settings_file, data)

    def contains(self, key: str) -> bool:
        return key in self._load()


@dataclass
class DrinkLogEntry:
    id: int
    volume: int
    timestamp: str  # ISO format datetime

    @property
    def logged_at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)


def day_bounds(day: date, tzinfo=None) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time(0, 0), tzinfo=tzinfo)
    return start, start + timedelta(days=1)


class DrinkLogStore:
    """Append-only drink log in a JSON file"""

    def __init__(self, data_dir: str = "data", clock: Callable[[], datetime] = None):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.data_dir / "drink_log.json"
        self.clock = clock or time_service.now

    def _load(self) -> Dict[str, Any]:
        data = _read_json(self.log_file, None)
        if not isinstance(data, dict) or 'entries' not in data:
            return {'next_id': 1, 'entries': []}
        return data

    def _entries(self) -> List[DrinkLogEntry]:
        entries = []
        for entry_dict in self._load()['entries']:
            try:
                entries.append(DrinkLogEntry(**entry_dict))
            except TypeError as e:
                print(f"Error loading drink log entry {entry_dict}: {e}")
        return entries

    def insert(self, volume: int, logged_at: Optional[datetime] = None) -> int:
        data = self._load()
        entry = DrinkLogEntry(
            id=data['next_id'],
            volume=int(volume),
            timestamp=(logged_at or self.clock()).isoformat(),
        )
        data['entries'].append(asdict(entry))
        data['next_id'] = entry.id + 1
        _write_json(self.log_file, data)
        return entry.id

    def delete(self, entry_id: int) -> bool:
        data = self._load()
        remaining = [e for e in data['entries'] if e.get('id') != entry_id]
        if len(remaining) == len(data['entries']):
            return False
        data['entries'] = remaining
        _write_json(self.log_file, data)
        return True

    def query(self, start: datetime, end: datetime) -> List[DrinkLogEntry]:
        """Entries in [start, end), newest first"""
        entries = [e for e in self._entries() if start <= e.logged_at < end]
        return sorted(entries, key=lambda e: e.logged_at, reverse=True)

    def sum(self, start: datetime, end: datetime) -> int:
        return sum(e.volume for e in self.query(start, end))

    def today_bounds(self) -> Tuple[datetime, datetime]:
        now = self.clock()
        return day_bounds(now.date(), now.tzinfo)

    def today_total(self) -> int:
        return self.sum(*self.today_bounds())

    def today_entries(self) -> List[DrinkLogEntry]:
        return self.query(*self.today_bounds())

    def daily_totals(self, start_date: date, end_date: date) -> Dict[date, int]:
        """Per-day totals over an inclusive date range"""
        tzinfo = self.clock().tzinfo
        start, _ = day_bounds(start_date, tzinfo)
        _, end = day_bounds(end_date, tzinfo)
        totals = defaultdict(int)
        for entry in self.query(start, end):
            totals[entry.logged_at.date()] += entry.volume
        return dict(totals)

    def days_with_logs(self, start_date: date, end_date: date) -> List[date]:
        return sorted(self.daily_totals(start_date, end_date))
