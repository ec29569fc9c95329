"""
Virtual Assistant Functions Library

This module provides the glue between the Azure Speech SDK dialog connector, the microphone and the speaker:

1. Service Initialization Functions:
   - init_config(): Loads and validates environment configuration
   - init_logging(): Configures console logging
   - init_dialog(): Builds a DialogServiceConnector for a Direct Line Speech bot or a Custom Commands app

2. Event Functions:
   - connect_events(): Subscribes every connector event and routes it to dispatch_event()
   - play_activity_audio(): Plays the audio attached to a bot activity

3. Conversation Functions:
   - run_dialog(): Connects, listens for one turn (or keeps listening) and disconnects

4. Configuration Options:
   - SPEECH_KEY/SPEECH_REGION: Speech resource used by the connector
   - DIALOG_TYPE: 'bot' (Direct Line Speech, optional BOT_ID) or 'custom_commands' (CUSTOM_COMMANDS_APP_ID)
   - SPEECH_LANGUAGE: Recognition language
   - LISTEN_MODE: 'once' or 'continuous'
   - AUDIO_SAMPLE_RATE/AUDIO_BITS_PER_SAMPLE/AUDIO_CHANNELS: Activity audio format when the stream has no header
   - PLAYBACK_BUFFER_FRAMES: Frames per playback read
   - LOG_LEVEL: Console log level
"""

# Import packages
import os
import logging
import threading
import azure.cognitiveservices.speech as speech_sdk
import pygame

from activity_audio import ActivityAudioStream, ActivityAudioError, AudioFormatDescriptor
from audio_output import PygameOutputLine, play_stream
from dialog_events import DialogEvent, EventKind, dispatch_event

logger = logging.getLogger(__name__)

# Constants / Configuration
PLACEHOLDERS = {
    "SPEECH_KEY": "YourSubscriptionKey",
    "SPEECH_REGION": "YourServiceRegion",
    "BOT_ID": "YourBotId",
    "CUSTOM_COMMANDS_APP_ID": "YourApplicationId",
}
DIALOG_TYPES = ("bot", "custom_commands")
LISTEN_MODES = ("once", "continuous")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

# Connector event name -> event kind
CONNECTOR_EVENTS = {
    "recognizing": EventKind.RECOGNIZING,
    "recognized": EventKind.RECOGNIZED,
    "session_started": EventKind.SESSION_STARTED,
    "session_stopped": EventKind.SESSION_STOPPED,
    "canceled": EventKind.CANCELED,
    "activity_received": EventKind.ACTIVITY_RECEIVED,
    "turn_status_received": EventKind.TURN_STATUS_RECEIVED,
}


def _get_int(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{value}'") from None


def _get_choice(name, default, choices):
    value = (os.getenv(name) or default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got '{value}'")
    return value


def _check_required(setup_vars, name):
    value = setup_vars.get(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    if value == PLACEHOLDERS.get(name):
        raise ValueError(f"Replace the string \"{value}\" in {name} with your own value.")


# Configure solution
def init_config():
    """Reads the environment (call load_dotenv() first) and validates it."""
    setup_vars = {
        "SPEECH_KEY": os.getenv("SPEECH_KEY"),
        "SPEECH_REGION": os.getenv("SPEECH_REGION"),
        "DIALOG_TYPE": _get_choice("DIALOG_TYPE", "bot", DIALOG_TYPES),
        "BOT_ID": os.getenv("BOT_ID") or None,
        "CUSTOM_COMMANDS_APP_ID": os.getenv("CUSTOM_COMMANDS_APP_ID"),
        "SPEECH_LANGUAGE": os.getenv("SPEECH_LANGUAGE") or None,
        "LISTEN_MODE": _get_choice("LISTEN_MODE", "once", LISTEN_MODES),
        "AUDIO_FORMAT": AudioFormatDescriptor(
            samples_per_second=_get_int("AUDIO_SAMPLE_RATE", 16000),
            bits_per_sample=_get_int("AUDIO_BITS_PER_SAMPLE", 16),
            channels=_get_int("AUDIO_CHANNELS", 1),
        ),
        "PLAYBACK_BUFFER_FRAMES": _get_int("PLAYBACK_BUFFER_FRAMES", 1),
        "LOG_LEVEL": _get_choice("LOG_LEVEL", "info", LOG_LEVELS).upper(),
    }

    _check_required(setup_vars, "SPEECH_KEY")
    _check_required(setup_vars, "SPEECH_REGION")
    if setup_vars["DIALOG_TYPE"] == "custom_commands":
        _check_required(setup_vars, "CUSTOM_COMMANDS_APP_ID")
    elif setup_vars["BOT_ID"] == PLACEHOLDERS["BOT_ID"]:
        _check_required(setup_vars, "BOT_ID")
    if setup_vars["PLAYBACK_BUFFER_FRAMES"] < 1:
        raise ValueError("PLAYBACK_BUFFER_FRAMES must be at least 1")

    logger.debug("Configuration - DIALOG_TYPE: %s, SPEECH_REGION: %s, SPEECH_LANGUAGE: %s, LISTEN_MODE: %s",
                 setup_vars["DIALOG_TYPE"], setup_vars["SPEECH_REGION"],
                 setup_vars["SPEECH_LANGUAGE"], setup_vars["LISTEN_MODE"])
    return setup_vars


def init_logging(level="INFO"):
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


# Configure the dialog connector
def init_dialog(setup_vars):
    if setup_vars["DIALOG_TYPE"] == "custom_commands":
        dialog_config = speech_sdk.dialog.CustomCommandsConfig(
            app_id=setup_vars["CUSTOM_COMMANDS_APP_ID"],
            subscription=setup_vars["SPEECH_KEY"],
            region=setup_vars["SPEECH_REGION"],
        )
        logger.info("Using Custom Commands application %s", setup_vars["CUSTOM_COMMANDS_APP_ID"])
    else:
        dialog_config = speech_sdk.dialog.BotFrameworkConfig(
            subscription=setup_vars["SPEECH_KEY"],
            region=setup_vars["SPEECH_REGION"],
            bot_id=setup_vars["BOT_ID"],
        )
        logger.info("Using Direct Line Speech bot %s", setup_vars["BOT_ID"] or "(default)")

    if setup_vars["SPEECH_LANGUAGE"]:
        dialog_config.language = setup_vars["SPEECH_LANGUAGE"]

    # Set audio input from microphone
    audio_config = speech_sdk.audio.AudioConfig(use_default_microphone=True)
    connector = speech_sdk.dialog.DialogServiceConnector(dialog_config=dialog_config, audio_config=audio_config)
    logger.info("Dialog connector ready in %s", setup_vars["SPEECH_REGION"])
    return connector


# Callback functions

def play_activity_audio(pull_stream, setup_vars, line=None):
    """
    Plays the pulled audio of one activity. Failures are logged and that turn's audio is dropped;
    the dialog session carries on.
    """
    line = line or PygameOutputLine()
    try:
        stream = ActivityAudioStream.open(pull_stream, default_format=setup_vars["AUDIO_FORMAT"])
        total = play_stream(stream, line, frames_per_buffer=setup_vars["PLAYBACK_BUFFER_FRAMES"])
        logger.info("Playback completed: %d bytes", total)
    except (ActivityAudioError, pygame.error) as e:
        logger.error("Exception thrown during playback", exc_info=e)


def connect_events(connector, state, play_audio):
    """Routes every connector event through dispatch_event()."""
    for name, kind in CONNECTOR_EVENTS.items():
        def callback(evt, kind=kind):
            dispatch_event(DialogEvent.from_sdk(kind, evt), state, play_audio)
        getattr(connector, name).connect(callback)


# Conduct the conversation
def run_dialog(connector, state, continuous=False, stop_flag=None):
    """Connects the dialog and listens for one turn, or turn after turn if 'continuous'. Always disconnects."""
    stop_flag = stop_flag or threading.Event()
    turns = 0
    try:
        # Connect to the backing dialog
        connector.connect()
        logger.info("Dialog connector is successfully connected")

        while not stop_flag.is_set():
            state.start_turn()
            print("Say something ...")
            listen_future = connector.listen_once_async()
            if not state.wait_for_turn(stop_flag=stop_flag):
                break
            # Surfaces listen errors the connector did not report as canceled
            listen_future.get()
            turns += 1
            if state.canceled.is_set() or not continuous:
                break
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    except Exception as e:
        logger.error("Exception thrown while talking to the dialog connector", exc_info=e)
    finally:
        # Disconnect from the dialog
        connector.disconnect()
        logger.info("Dialog connector disconnected after %d turn(s)", turns)
    return turns
