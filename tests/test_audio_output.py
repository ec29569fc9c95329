# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

import audio_output
from activity_audio import (
    ActivityAudioStream,
    AudioFormatDescriptor,
    DEFAULT_FORMAT,
    FormatUnavailable,
    ReadFailure,
)
from audio_output import PygameOutputLine, play_stream


class FakeSound:
    def __init__(self, buffer):
        self.buffer = bytes(buffer)


class FakeChannel:
    """Plays instantly unless told to stay busy for a number of polls."""

    def __init__(self, busy_polls=0):
        self.busy_polls = busy_polls
        self.played = []
        self.queued = None
        self.stopped = False

    def play(self, sound):
        self.played.append(sound.buffer)

    def queue(self, sound):
        self.queued = sound

    def get_queue(self):
        return self.queued

    def get_busy(self):
        if self.busy_polls > 0:
            self.busy_polls -= 1
            return True
        if self.queued is not None:
            self.played.append(self.queued.buffer)
            self.queued = None
        return False

    def stop(self):
        self.stopped = True


class FakeMixer:
    def __init__(self, current=None, negotiated=None):
        self.current = current
        self.negotiated = negotiated
        self.init_calls = []
        self.quit_calls = 0
        self.channel = FakeChannel()

    def get_init(self):
        return self.current

    def init(self, frequency, size, channels, buffer, allowedchanges=-1):
        self.init_calls.append((frequency, size, channels, buffer, allowedchanges))
        self.current = self.negotiated or (frequency, size, channels)

    def quit(self):
        self.quit_calls += 1
        self.current = None

    def find_channel(self, force=False):
        return self.channel

    Sound = FakeSound


class RecordingLine:
    def __init__(self, fail_on_open=None):
        self.fail_on_open = fail_on_open
        self.calls = []
        self.chunks = []

    def open(self, audio_format):
        self.calls.append("open")
        if self.fail_on_open:
            raise self.fail_on_open

    def start(self):
        self.calls.append("start")

    def write(self, data):
        self.chunks.append(bytes(data))

    def drain(self):
        self.calls.append("drain")

    def stop(self):
        self.calls.append("stop")

    def close(self):
        self.calls.append("close")


@pytest.fixture
def mixer(monkeypatch):
    fake = FakeMixer()
    monkeypatch.setattr(audio_output.pygame, "mixer", fake)
    monkeypatch.setattr(audio_output, "POLL_INTERVAL", 0)
    return fake


# ---------------------------------------------------------------------
# play_stream()
# ---------------------------------------------------------------------

def test_play_stream_three_chunk_scenario(make_pull_stream):
    source = make_pull_stream([b"\x01" * 320, b"\x02" * 320, b""])
    stream = ActivityAudioStream.open(source)
    line = RecordingLine()

    total = play_stream(stream, line, frames_per_buffer=160)

    assert total == 640
    assert line.chunks == [b"\x01" * 320, b"\x02" * 320]
    assert line.calls == ["open", "start", "drain", "stop", "close"]
    assert stream.closed
    assert source.close_calls == 1


def test_play_stream_reads_one_frame_at_a_time(make_pull_stream):
    stream = ActivityAudioStream.open(make_pull_stream([b"\x01\x02" * 5]))
    line = RecordingLine()

    assert play_stream(stream, line) == 10
    assert line.chunks == [b"\x01\x02"] * 5


def test_play_stream_closes_everything_on_read_failure(make_pull_stream):
    source = make_pull_stream([b"\x01" * 320, b"\x02" * 320], fail_after=1)
    stream = ActivityAudioStream.open(source)
    line = RecordingLine()

    with pytest.raises(ReadFailure):
        play_stream(stream, line, frames_per_buffer=160)

    assert "drain" not in line.calls
    assert line.calls[-1] == "close"
    assert stream.closed
    assert source.close_calls == 1


def test_play_stream_closes_stream_when_line_rejects_format(make_pull_stream):
    stream = ActivityAudioStream.open(make_pull_stream([b"\x01" * 8]))
    line = RecordingLine(fail_on_open=FormatUnavailable("nope"))

    with pytest.raises(FormatUnavailable):
        play_stream(stream, line)

    assert line.calls == ["open", "close"]
    assert stream.closed


# ---------------------------------------------------------------------
# PygameOutputLine
# ---------------------------------------------------------------------

def test_open_initializes_mixer_for_format(mixer):
    line = PygameOutputLine()
    line.open(DEFAULT_FORMAT)

    assert mixer.init_calls == [(16000, -16, 1, audio_output.MIXER_BUFFER, 0)]


def test_open_keeps_mixer_when_format_matches(monkeypatch):
    fake = FakeMixer(current=(16000, -16, 1))
    monkeypatch.setattr(audio_output.pygame, "mixer", fake)

    PygameOutputLine().open(DEFAULT_FORMAT)

    assert fake.init_calls == []
    assert fake.quit_calls == 0


def test_open_reinitializes_mixer_on_format_change(monkeypatch):
    fake = FakeMixer(current=(22050, -16, 2))
    monkeypatch.setattr(audio_output.pygame, "mixer", fake)

    PygameOutputLine().open(AudioFormatDescriptor(8000, 8, 1))

    assert fake.quit_calls == 1
    assert fake.init_calls == [(8000, 8, 1, audio_output.MIXER_BUFFER, 0)]


def test_open_rejects_device_format_other_than_requested(monkeypatch):
    fake = FakeMixer(negotiated=(48000, -16, 2))
    monkeypatch.setattr(audio_output.pygame, "mixer", fake)

    with pytest.raises(FormatUnavailable):
        PygameOutputLine().open(DEFAULT_FORMAT)

    assert fake.quit_calls == 1
    assert fake.current is None


def test_open_rejects_unsupported_depth(mixer):
    with pytest.raises(FormatUnavailable):
        PygameOutputLine().open(AudioFormatDescriptor(16000, 24, 1))
    assert mixer.init_calls == []


def test_write_queues_whole_blocks_and_drain_flushes(mixer):
    line = PygameOutputLine(block_ms=10, poll_interval=0)
    line.open(DEFAULT_FORMAT)
    line.start()

    # 10 ms at 16 kHz / 16-bit / mono is 320 bytes
    line.write(b"\x01" * 300)
    assert mixer.channel.played == []
    line.write(b"\x02" * 400)
    assert mixer.channel.played == [b"\x01" * 300 + b"\x02" * 20, b"\x02" * 320]

    # Trailing odd byte is not a whole frame
    line.write(b"\x03")
    line.drain()
    line.stop()
    line.close()

    assert mixer.channel.played[2:] == [b"\x02" * 60]
    assert line.bytes_written == 700
    assert mixer.channel.stopped


def test_busy_channel_gets_queued_sound(mixer):
    mixer.channel.busy_polls = 3
    line = PygameOutputLine(block_ms=10, poll_interval=0)
    line.open(DEFAULT_FORMAT)
    line.start()

    line.write(b"\x01" * 320)
    assert mixer.channel.queued is not None

    line.drain()
    assert mixer.channel.played == [b"\x01" * 320]
    assert mixer.channel.queued is None


def test_write_before_start_fails(mixer):
    line = PygameOutputLine()
    line.open(DEFAULT_FORMAT)
    with pytest.raises(RuntimeError):
        line.write(b"\x00\x00")
