"""
Virtual Assistant Console Application

This is a command-line application that talks to a bot through the Azure Speech SDK dialog connector:

1. Voice Dialog:
   - Captures speech from the default microphone
   - Sends it to a Direct Line Speech bot or a Custom Commands application
   - Logs intermediate and final recognition results

2. Bot Responses:
   - Logs every activity the bot sends back
   - Plays activity audio on the local speaker through pygame

3. Configuration:
   - Read from environment variables or a .env file (see .env.example)
   - LISTEN_MODE=once stops after the first turn, LISTEN_MODE=continuous keeps listening until Ctrl+C
"""

# Import packages
import sys
import logging
from dotenv import load_dotenv
from functions import init_config, init_logging, init_dialog, connect_events, play_activity_audio, run_dialog
from dialog_events import DialogState


def main():

    # Get Configuration Settings
    load_dotenv(override=True)
    init_logging()
    try:
        setup_vars = init_config()
    except ValueError as e:
        logging.getLogger("virtual-assistant").error("Invalid configuration: %s", e)
        return 1
    init_logging(setup_vars["LOG_LEVEL"])

    # Create the dialog connector
    connector = init_dialog(setup_vars)

    # Configure all event callbacks
    state = DialogState()
    connect_events(connector, state, lambda pull_stream: play_activity_audio(pull_stream, setup_vars))

    # Talk to the bot
    run_dialog(connector, state, continuous=setup_vars["LISTEN_MODE"] == "continuous")
    return 0


if __name__ == "__main__":
    sys.exit(main())
