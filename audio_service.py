import os
import glob
import random
import asyncio
from typing import Dict, List, Optional
from dataclasses import dataclass

from errors import ResourceUnavailable

AUDIO_CATEGORIES = ('alarm', 'reminder')
AUDIO_EXTENSIONS = ('mp3', 'wav', 'ogg')


@dataclass
class AudioFile:
    """Represents an audio file with metadata"""
    path: str
    category: str  # 'alarm' or 'reminder'
    variant: Optional[int] = None  # variant number if present


class LoopingAudio:
    """Plays one file over and over until stopped"""

    def __init__(self, audio_file: AudioFile, player: str):
        self.audio_file = audio_file
        self.player = player
        self._process = None
        self._task = None

    @property
    def is_playing(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def _loop(self):
        try:
            while True:
                self._process = await asyncio.create_subprocess_exec(
                    self.player, self.audio_file.path,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL
                )
                await self._process.wait()
        except asyncio.CancelledError:
            raise
        except OSError as e:
            print(f"Error playing looping audio: {e}")
        finally:
            self._terminate()

    def _terminate(self):
        if self._process and self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass
        self._process = None

    def stop(self):
        """Stop playback and release the player process"""
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self._terminate()


class AudioService:
    """Alarm and reminder sounds from an audio directory"""

    def __init__(self, audio_directory: str = "data/audio", player: str = "afplay"):
        self.audio_directory = audio_directory
        self.player = player
        self.audio_files: Dict[str, List[AudioFile]] = {category: [] for category in AUDIO_CATEGORIES}
        self._scan_audio_files()

    def _scan_audio_files(self):
        """Scan audio directory for {category}[_v{n}].{ext} files"""
        if not os.path.exists(self.audio_directory):
            print(f"Warning: Audio directory '{self.audio_directory}' not found")
            return

        for category in AUDIO_CATEGORIES:
            for ext in AUDIO_EXTENSIONS:
                for file_path in glob.glob(f"{self.audio_directory}/{category}*.{ext}"):
                    audio_file = self._parse_audio_filename(file_path, category)
                    if audio_file:
                        self.audio_files[category].append(audio_file)

        found = ', '.join(f"{c}({len(files)})" for c, files in self.audio_files.items() if files)
        print(f"🔊 Audio Service: {found or 'no audio files found'}")

    def _parse_audio_filename(self, file_path: str, category: str) -> Optional[AudioFile]:
        name_without_ext = os.path.splitext(os.path.basename(file_path))[0]
        rest = name_without_ext[len(category):]
        if not rest:
            return AudioFile(path=file_path, category=category)
        if not rest.startswith('_v'):
            return None
        try:
            return AudioFile(path=file_path, category=category, variant=int(rest[2:]))
        except ValueError:
            print(f"Warning: Could not parse audio file '{file_path}'")
            return None

    def _select_audio_file(self, category: str) -> AudioFile:
        files = self.audio_files.get(category) or []
        if not files:
            raise ResourceUnavailable(f"No {category} audio available in '{self.audio_directory}'")
        return random.choice(files)

    def start_loop(self, category: str = 'alarm') -> LoopingAudio:
        """Start looping playback; raises ResourceUnavailable when no sound exists"""
        audio = LoopingAudio(self._select_audio_file(category), self.player)
        audio.start()
        print(f"🔊 Looping {os.path.basename(audio.audio_file.path)}")
        return audio

    async def play_once(self, category: str) -> bool:
        """Play a single sound in the background"""
        try:
            audio_file = self._select_audio_file(category)
            await asyncio.create_subprocess_exec(
                self.player, audio_file.path,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL
            )
            return True
        except (ResourceUnavailable, OSError) as e:
            print(f"Error playing {category} audio: {e}")
            return False
