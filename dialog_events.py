"""
Dialog Events

Everything the dialog connector reports goes through one event type and one dispatch function:

1. EventKind / DialogEvent:
   - One value per connector event (recognizing, recognized, session started/stopped,
     canceled, activity received, turn status received)
   - DialogEvent.from_sdk() copies the fields we need out of the SDK event args

2. DialogState:
   - Flags shared between the SDK callback thread and the main thread
   - Playback lock so the next turn waits for the bot's audio to finish

3. dispatch_event():
   - Logs each event and decides what to do with it
"""

# Import packages
import json
import logging
import threading
from enum import Enum
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    RECOGNIZING = "recognizing"
    RECOGNIZED = "recognized"
    SESSION_STARTED = "session_started"
    SESSION_STOPPED = "session_stopped"
    CANCELED = "canceled"
    ACTIVITY_RECEIVED = "activity_received"
    TURN_STATUS_RECEIVED = "turn_status_received"


@dataclass(frozen=True)
class DialogEvent:
    kind: EventKind
    text: str = ""
    session_id: str = ""
    reason: Any = None
    error_details: str = ""
    activity: str = ""
    audio: Any = None
    interaction_id: str = ""
    status_code: Optional[int] = None

    @property
    def has_audio(self):
        return self.audio is not None

    @classmethod
    def from_sdk(cls, kind, evt):
        """Builds a DialogEvent from the speech SDK event args delivered for 'kind'."""
        if kind in (EventKind.RECOGNIZING, EventKind.RECOGNIZED):
            return cls(kind, text=evt.result.text or "", session_id=evt.session_id)
        if kind in (EventKind.SESSION_STARTED, EventKind.SESSION_STOPPED):
            return cls(kind, session_id=evt.session_id)
        if kind == EventKind.CANCELED:
            return cls(kind, session_id=evt.session_id, reason=evt.reason, error_details=evt.error_details or "")
        if kind == EventKind.ACTIVITY_RECEIVED:
            return cls(kind, activity=evt.activity, audio=evt.audio)
        if kind == EventKind.TURN_STATUS_RECEIVED:
            return cls(kind, interaction_id=evt.interaction_id, status_code=evt.status_code)
        raise ValueError(f"Unknown event kind: {kind}")


class DialogState:
    """Turn progress shared between the connector callbacks and the main loop."""

    def __init__(self):
        self.turn_finished = threading.Event()
        self.canceled = threading.Event()
        self.playback_lock = threading.Lock()

    def start_turn(self):
        self.turn_finished.clear()

    def finish_turn(self):
        self.turn_finished.set()

    def wait_for_turn(self, poll_interval=0.5, stop_flag=None):
        """Blocks until the turn has finished and any playback is done. Returns False if stopped early."""
        while not self.turn_finished.wait(poll_interval):
            if stop_flag is not None and stop_flag.is_set():
                return False
        # Playback runs on the SDK thread while holding the lock
        with self.playback_lock:
            pass
        return True


def _describe_activity(activity):
    try:
        parsed = json.loads(activity)
    except (TypeError, ValueError):
        return activity
    if isinstance(parsed, dict) and parsed.get("text"):
        return f"{parsed.get('type', 'activity')}: {parsed['text']}"
    return activity


def dispatch_event(event: DialogEvent, state: DialogState, play_audio):
    """Handles a single connector event. 'play_audio' is called with the pulled audio stream of an activity."""
    kind = event.kind

    # Intermediate text while audio is being processed
    if kind == EventKind.RECOGNIZING:
        logger.info("Recognizing speech event text: %s", event.text)

    # Final text once audio capture is completed
    elif kind == EventKind.RECOGNIZED:
        if not event.text.strip():
            logger.warning("No speech was recognized. Try running the program again.")
        else:
            logger.info("Recognized speech event text: %s", event.text)

    # Audio begins flowing to the service for a turn
    elif kind == EventKind.SESSION_STARTED:
        logger.info("Session started event. Session id: %s", event.session_id)

    # Audio capture is over; the bot may still be sending activities
    elif kind == EventKind.SESSION_STOPPED:
        logger.info("Session stopped event. Session id: %s", event.session_id)

    # Turn aborted or failed; the main loop disconnects
    elif kind == EventKind.CANCELED:
        logger.info("Canceled event. Reason: %s. Details: %s", event.reason, event.error_details)
        state.canceled.set()
        state.finish_turn()

    # Bot Framework activity, optionally carrying audio
    elif kind == EventKind.ACTIVITY_RECEIVED:
        logger.info("Received activity %s audio: %s",
                    "with" if event.has_audio else "without", _describe_activity(event.activity))
        logger.debug("Activity payload: %s", event.activity)
        if event.has_audio:
            print("Starting playback.")
            with state.playback_lock:
                play_audio(event.audio)

    # The bot has finished responding to the turn
    elif kind == EventKind.TURN_STATUS_RECEIVED:
        if event.status_code == 200:
            logger.info("Turn status for interaction %s: %s", event.interaction_id, event.status_code)
        else:
            logger.warning("Turn status for interaction %s: %s", event.interaction_id, event.status_code)
        state.finish_turn()

    else:
        raise ValueError(f"Unknown event kind: {kind}")
