import asyncio
import json
from typing import Callable, List, Optional, Sequence

from nicegui import Client

from errors import ResourceUnavailable

# Milliseconds: initial delay, then alternating on/off
ALARM_VIBRATION_PATTERN = (0, 500, 500)
CHANNEL_VIBRATION_PATTERN = (0, 500, 500, 500, 500)


def connected_clients() -> List[Client]:
    return [client for client in Client.instances.values() if client.has_socket_connection]


class RepeatingVibration:
    """Re-issues a vibration pattern on every connected browser until stopped"""

    def __init__(self, pattern: Sequence[int], clients_provider: Callable[[], List[Client]]):
        self.pattern = list(pattern)
        self.clients_provider = clients_provider
        self._task = None

    @property
    def period_seconds(self) -> float:
        return max(sum(self.pattern), 100) / 1000

    def start(self):
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def _loop(self):
        while True:
            _vibrate(self.clients_provider(), self.pattern[1:])
            await asyncio.sleep(self.period_seconds)

    def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        _vibrate(self.clients_provider(), [0])


def _vibrate(clients: List[Client], pattern: Sequence[int]):
    code = f"navigator.vibrate && navigator.vibrate({json.dumps(list(pattern))})"
    for client in clients:
        try:
            client.run_javascript(code)
        except RuntimeError as e:
            print(f"Vibration request to client {client.id} failed: {e}")


class VibrationService:
    """Vibration through the browser Vibration API of connected NiceGUI clients"""

    def __init__(self, clients_provider: Optional[Callable[[], List[Client]]] = None):
        self.clients_provider = clients_provider or connected_clients

    def start_pattern(self, pattern: Sequence[int] = ALARM_VIBRATION_PATTERN) -> RepeatingVibration:
        """Start a repeating pattern; raises ResourceUnavailable with no device attached"""
        if not self.clients_provider():
            raise ResourceUnavailable("No connected client to vibrate")
        vibration = RepeatingVibration(pattern, self.clients_provider)
        vibration.start()
        return vibration

    def pulse_once(self, pattern: Sequence[int] = CHANNEL_VIBRATION_PATTERN):
        _vibrate(self.clients_provider(), list(pattern)[1:])
