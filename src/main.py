"""
Voice Session — command-line entry point

Talks to the remote voice interface through the default microphone and
speaker until interrupted with Ctrl+C. The chat group id is printed on
exit so the conversation can be resumed later.

Usage:
    python main.py
    python main.py --resume <chat_group_id>
"""

import argparse
import asyncio
import signal
import sys

from core.errors import SessionConnectionError, VoiceSessionError
from core.logger import get_logger, setup_logging
from core.settings import get_settings
from session import VoiceSession

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Real-time voice conversation with a remote agent")
    parser.add_argument("--resume", metavar="CHAT_GROUP_ID", help="resume an earlier conversation")
    parser.add_argument("--input-device", type=int, default=None, help="PortAudio input device index")
    parser.add_argument("--output-device", type=int, default=None, help="PortAudio output device index")
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    from devices.pyaudio_device import PyAudioInput, PyAudioOutput

    settings = get_settings()

    def on_error(error: Exception) -> None:
        logger.error(f"Session error: {error}")

    voice = VoiceSession(
        input_device=PyAudioInput(device_index=args.input_device),
        output_device=PyAudioOutput(device_index=args.output_device),
        settings=settings,
        on_error=on_error,
    )

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    async with voice:
        try:
            await voice.connect(resumed_chat_group_id=args.resume)
        except SessionConnectionError as e:
            logger.error(f"Could not start session: {e}")
            return 1

        logger.info("Session started. Speak now; press Ctrl+C to stop.")
        closed = asyncio.create_task(voice.wait_closed())
        stopping = asyncio.create_task(stop_requested.wait())
        await asyncio.wait({closed, stopping}, return_when=asyncio.FIRST_COMPLETED)
        for task in (closed, stopping):
            task.cancel()

    if voice.chat_group_id:
        logger.info(f"Resume this conversation with: --resume {voice.chat_group_id}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level, wire_debug=settings.debug)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0
    except VoiceSessionError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
