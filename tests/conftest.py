# pylint: disable=missing-module-docstring,missing-function-docstring

import ctypes

import pytest


class FakePullStream:
    """
    Stands in for speechsdk.audio.PullAudioOutputStream:
    read() fills the given bytes object in place and returns the byte count, 0 at the end.
    """

    def __init__(self, chunks, fail_after=None):
        self.chunks = [bytes(c) for c in chunks]
        self.fail_after = fail_after
        self.reads = 0
        self.close_calls = 0

    def read(self, audio_buffer):
        if self.fail_after is not None and self.reads >= self.fail_after:
            raise RuntimeError("connection reset")
        self.reads += 1
        if not self.chunks:
            return 0
        chunk = self.chunks.pop(0)
        assert len(chunk) <= len(audio_buffer)
        ctypes.memmove(audio_buffer, chunk, len(chunk))
        return len(chunk)

    def close(self):
        self.close_calls += 1


@pytest.fixture
def make_pull_stream():
    return FakePullStream
