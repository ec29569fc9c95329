"""
Audio Output

Local playback of activity audio through pygame:

1. PygameOutputLine:
   - Line-style output device: open(format) -> start() -> write()* -> drain() -> stop() -> close()
   - Keeps pygame.mixer initialized between activities, re-initializes only when the format changes
   - Queues ~100 ms blocks of whole frames on a mixer channel

2. play_stream():
   - Playback loop reading an ActivityAudioStream into a frame-sized buffer
   - Always closes the line and the stream, whatever happens
"""

# Import packages
import os
import time
import logging
import warnings

# Suppress pygame warnings before importing
warnings.filterwarnings("ignore", category=UserWarning, module="pygame.pkgdata")
os.environ['PYGAME_HIDE_SUPPORT_PROMPT'] = "1"  # Hide pygame welcome message

import pygame

from activity_audio import END_OF_STREAM, FormatUnavailable

logger = logging.getLogger(__name__)

# pygame mixer sizes: negative means signed samples
MIXER_SIZES = {8: 8, 16: -16}
MIXER_BUFFER = 512
BLOCK_MS = 100
POLL_INTERVAL = 0.01


class PygameOutputLine:
    """Plays raw PCM written to it on a pygame mixer channel."""

    def __init__(self, block_ms=BLOCK_MS, poll_interval=POLL_INTERVAL):
        self.block_ms = block_ms
        self.poll_interval = poll_interval
        self._format = None
        self._channel = None
        self._pending = bytearray()
        self._block_size = 0
        self._running = False
        self.bytes_written = 0

    def open(self, audio_format):
        size = MIXER_SIZES.get(audio_format.bits_per_sample)
        if size is None:
            raise FormatUnavailable(f"pygame mixer cannot play {audio_format.bits_per_sample}-bit audio")

        wanted = (audio_format.samples_per_second, size, audio_format.channels)
        current = pygame.mixer.get_init()
        if current != wanted:
            if current:
                logger.debug("Re-initializing pygame mixer: %s -> %s", current, wanted)
                pygame.mixer.quit()
            # allowedchanges=0 makes SDL convert instead of picking its own device format
            pygame.mixer.init(frequency=audio_format.samples_per_second, size=size,
                              channels=audio_format.channels, buffer=MIXER_BUFFER, allowedchanges=0)
            current = pygame.mixer.get_init()
            logger.debug("pygame.mixer initialized with %s", current)
            if current != wanted:
                pygame.mixer.quit()
                raise FormatUnavailable(f"pygame mixer opened as {current}, not {wanted}")

        self._format = audio_format
        self._channel = pygame.mixer.find_channel(True)
        frames_per_block = max(1, audio_format.samples_per_second * self.block_ms // 1000)
        self._block_size = frames_per_block * audio_format.frame_size
        self._pending.clear()

    def start(self):
        if self._channel is None:
            raise RuntimeError("Output line is not open")
        self._running = True

    def write(self, data):
        if not self._running:
            raise RuntimeError("Output line is not started")
        self._pending.extend(data)
        while len(self._pending) >= self._block_size:
            block = bytes(self._pending[:self._block_size])
            del self._pending[:self._block_size]
            self._enqueue(block)
        return len(data)

    def drain(self):
        """Plays whatever is buffered and blocks until the channel goes idle."""
        # The mixer only accepts whole frames
        usable = len(self._pending) - len(self._pending) % self._format.frame_size
        if usable:
            self._enqueue(bytes(self._pending[:usable]))
        self._pending.clear()
        while self._channel.get_busy() or self._channel.get_queue() is not None:
            time.sleep(self.poll_interval)

    def stop(self):
        self._running = False
        if self._channel is not None:
            self._channel.stop()

    def close(self):
        # Mixer stays initialized for the next activity
        self._running = False
        self._pending.clear()
        self._channel = None

    def _enqueue(self, block):
        sound = pygame.mixer.Sound(buffer=block)
        if not self._channel.get_busy():
            self._channel.play(sound)
        else:
            # A channel holds a single queued sound
            while self._channel.get_queue() is not None:
                time.sleep(self.poll_interval)
            self._channel.queue(sound)
        self.bytes_written += len(block)


def play_stream(stream, line, frames_per_buffer=1):
    """
    Plays an ActivityAudioStream on an output line.
    Returns the number of bytes forwarded to the line.
    """
    audio_format = stream.get_format()
    data = bytearray(audio_format.frame_size * max(1, frames_per_buffer))
    view = memoryview(data)
    total = 0
    try:
        line.open(audio_format)
        line.start()
        while True:
            count = stream.read(data)
            if count is END_OF_STREAM:
                break
            if count:
                line.write(view[:count])
                total += count
        line.drain()
        line.stop()
        logger.debug("Playback finished: %d bytes", total)
    finally:
        line.close()
        stream.close()
    return total
