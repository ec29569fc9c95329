"""
Activity Audio Adapter

This module turns the audio attached to a bot activity into something the local sound device can play:

1. Audio Format:
   - AudioFormatDescriptor: sample rate, bit depth, channel count and frame size
   - DEFAULT_FORMAT: raw 16 kHz / 16-bit / mono PCM, the dialog service default output

2. Activity Audio Stream:
   - ActivityAudioStream.open(): wraps a speech SDK PullAudioOutputStream
   - get_format(): format read from the stream's WAVE header or the configured default
   - read(): copies pulled bytes into a caller buffer, END_OF_STREAM once exhausted
   - close(): releases the pulled stream (safe to call more than once)

3. Errors:
   - FormatUnavailable: no usable audio format
   - ReadFailure: the pulled stream failed mid-read
"""

# Import packages
import struct
from dataclasses import dataclass

# Constants / Configuration
VALID_BITS_PER_SAMPLE = (8, 16, 24, 32)
MIN_PULL_SIZE = 3200        # 100 ms of 16 kHz / 16-bit / mono
MAX_HEADER_SIZE = 4096      # give up looking for the WAVE 'data' chunk after this
WAVE_FORMAT_PCM = 0x0001
WAVE_FORMAT_EXTENSIBLE = 0xFFFE


class ActivityAudioError(Exception):
    """Base class for activity audio errors."""


class FormatUnavailable(ActivityAudioError):
    """The pulled stream cannot supply a playable audio format."""


class ReadFailure(ActivityAudioError):
    """The pulled stream raised an error while reading."""


class EndOfStream:
    """Sentinel type returned by ActivityAudioStream.read() once the stream is exhausted."""

    def __repr__(self):
        return "END_OF_STREAM"


END_OF_STREAM = EndOfStream()


@dataclass(frozen=True)
class AudioFormatDescriptor:
    samples_per_second: int
    bits_per_sample: int
    channels: int

    @property
    def frame_size(self) -> int:
        """Bytes per sample across all channels."""
        return self.channels * (self.bits_per_sample // 8)

    def validate(self):
        if self.samples_per_second <= 0:
            raise FormatUnavailable(f"Invalid sample rate: {self.samples_per_second}")
        if self.bits_per_sample not in VALID_BITS_PER_SAMPLE:
            raise FormatUnavailable(f"Unsupported bits per sample: {self.bits_per_sample}")
        if self.channels < 1:
            raise FormatUnavailable(f"Invalid channel count: {self.channels}")
        return self


DEFAULT_FORMAT = AudioFormatDescriptor(samples_per_second=16000, bits_per_sample=16, channels=1)


def parse_wave_header(data):
    """
    Parses a RIFF/WAVE header from the start of 'data'.
    Returns (format, header_length) once the 'data' chunk header has been seen,
    or None if more bytes are needed.
    """
    offset = 12
    audio_format = None
    while offset + 8 <= len(data):
        chunk_id, chunk_size = struct.unpack_from("<4sI", data, offset)
        body = offset + 8
        if chunk_id == b"data":
            if audio_format is None:
                raise FormatUnavailable("WAVE header has no 'fmt ' chunk before the audio data")
            return audio_format, body
        if chunk_id == b"fmt ":
            if body + 16 > len(data):
                return None
            format_tag, channels, sample_rate, _, _, bits = struct.unpack_from("<HHIIHH", data, body)
            if format_tag not in (WAVE_FORMAT_PCM, WAVE_FORMAT_EXTENSIBLE):
                raise FormatUnavailable(f"Unsupported WAVE encoding: 0x{format_tag:04x}")
            audio_format = AudioFormatDescriptor(
                samples_per_second=sample_rate,
                bits_per_sample=bits,
                channels=channels,
            )
        # Chunks are word aligned
        offset = body + chunk_size + (chunk_size & 1)
    return None


class ActivityAudioStream:
    """
    Sequential reader over a pulled activity audio stream.
    Only one read() may be outstanding at a time.
    """

    def __init__(self, source, audio_format, pending=b""):
        self._source = source
        self._format = audio_format
        self._pending = bytearray(pending)
        self._ended = False
        self._closed = False
        self.bytes_read = 0

    @classmethod
    def open(cls, source, default_format=DEFAULT_FORMAT):
        """
        Wraps 'source' (anything with the PullAudioOutputStream read() contract).
        The format comes from a leading WAVE header when present, otherwise 'default_format'.
        Raises FormatUnavailable, or ReadFailure if the header cannot be read.
        """
        try:
            audio_format, pending, ended = cls._sniff_format(source, default_format)
            audio_format.validate()
        except ActivityAudioError:
            _release(source)
            raise
        stream = cls(source, audio_format, pending)
        stream._ended = ended
        return stream

    @staticmethod
    def _sniff_format(source, default_format):
        data = bytearray()
        ended = False
        while len(data) < 4 and not ended:
            ended = not _pull_into(source, data, MIN_PULL_SIZE)

        if data[:4] != b"RIFF":
            return default_format, bytes(data), ended

        while True:
            if len(data) >= 12:
                if data[8:12] != b"WAVE":
                    raise FormatUnavailable("RIFF stream is not WAVE audio")
                parsed = parse_wave_header(data)
                if parsed is not None:
                    audio_format, header_length = parsed
                    return audio_format, bytes(data[header_length:]), ended
            if ended or len(data) > MAX_HEADER_SIZE:
                raise FormatUnavailable("Truncated WAVE header")
            ended = not _pull_into(source, data, MIN_PULL_SIZE)

    def get_format(self) -> AudioFormatDescriptor:
        return self._format

    @property
    def closed(self):
        return self._closed

    def read(self, buffer):
        """
        Copies up to len(buffer) bytes into 'buffer'.
        Returns the number of bytes copied, or END_OF_STREAM once the source is exhausted.
        """
        if self._closed:
            raise ValueError("I/O operation on closed activity audio stream")
        if not self._pending:
            if self._ended:
                return END_OF_STREAM
            if not _pull_into(self._source, self._pending, max(len(buffer), MIN_PULL_SIZE)):
                self._ended = True
                return END_OF_STREAM

        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        del self._pending[:count]
        self.bytes_read += count
        return count

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        source, self._source = self._source, None
        _release(source)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def _pull_into(source, target, size):
    """Pulls one block from 'source' and appends it to 'target'. Returns False at end of stream."""
    # The SDK fills a bytes object in place
    chunk = bytes(size)
    try:
        filled = source.read(chunk)
    except Exception as e:
        raise ReadFailure(f"Error reading activity audio: {e}") from e
    if filled <= 0:
        return False
    target.extend(chunk[:filled])
    return True


def _release(source):
    close = getattr(source, "close", None)
    if callable(close):
        close()
