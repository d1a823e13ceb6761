import asyncio
from datetime import datetime, timezone, timedelta
from typing import Optional

import aiohttp

# Response fields carrying the current time, by provider
TIME_FIELDS = ('utc_datetime', 'currentDateTime', 'dateTime')


class TimeService:
    """Local wall clock, optionally corrected by an offset from a time API"""

    def __init__(self, sync_url: Optional[str] = None, max_offset_age: timedelta = timedelta(hours=1)):
        self.sync_url = sync_url
        self.max_offset_age = max_offset_age
        self.api_time_offset = 0.0  # Seconds between API time and system time
        self.last_sync_time: Optional[datetime] = None

    async def sync_time(self) -> bool:
        """Synchronize with the configured time API and record the offset"""
        if not self.sync_url:
            return False

        try:
            timeout = aiohttp.ClientTimeout(total=10, connect=5)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.sync_url, headers={'User-Agent': 'HydrationReminder/1.0'}) as response:
                    if response.status == 200:
                        data = await response.json(content_type=None)
                        api_time = self._parse_api_response(data)
                        if api_time:
                            system_time = datetime.now(timezone.utc)
                            self.api_time_offset = (api_time - system_time).total_seconds()
                            self.last_sync_time = system_time
                            print(f"✅ Time synced with {self.sync_url}. Offset: {self.api_time_offset:.2f}s")
                            return True
                    else:
                        print(f"❌ HTTP {response.status} from {self.sync_url}")
        except asyncio.TimeoutError:
            print(f"⏱️ Timeout connecting to {self.sync_url}")
        except aiohttp.ClientError as e:
            print(f"❌ Failed to sync with {self.sync_url}: {e}")

        print("⚠️  Could not sync with time API, using system time")
        self.api_time_offset = 0.0
        return False

    def _parse_api_response(self, data: dict) -> Optional[datetime]:
        for key in TIME_FIELDS:
            value = data.get(key) if isinstance(data, dict) else None
            if not value:
                continue
            try:
                dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
            except ValueError:
                print(f"Failed to parse '{key}' from {self.sync_url}: {value}")
                return None
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)
        print(f"No time field in response from {self.sync_url}: {data}")
        return None

    def now(self) -> datetime:
        """Current local time, offset-corrected when the last sync is recent"""
        system_time = datetime.now(timezone.utc).replace(microsecond=0)

        if self.last_sync_time and self.api_time_offset:
            if system_time - self.last_sync_time < self.max_offset_age:
                system_time += timedelta(seconds=self.api_time_offset)

        return system_time.astimezone()

    async def ensure_time_sync(self):
        """Sync once at startup only"""
        if not self.last_sync_time:
            await self.sync_time()


# Global time service instance
time_service = TimeService()
