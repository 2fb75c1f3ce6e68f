#!/usr/bin/env python3
"""
Entry point for running streamscribe as a module.

Transcribes an audio file with the configured provider:
    python -m streamscribe recording.wav

The main() function is also used as the entry point for the console script
defined in pyproject.toml.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Reduce noise from external libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("faster_whisper").setLevel(logging.WARNING)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Transcribe the audio file named on the command line.

    Usage: streamscribe <audio-file> [config.json]

    Returns:
        int: Exit code (0 for success, 1 for errors, 2 for usage)
    """
    from . import __version__
    from .config import PipelineConfig, load_config
    from .exceptions import StreamScribeError
    from .session import TranscriptionSession

    args = sys.argv[1:] if argv is None else argv
    if not args or len(args) > 2:
        print("Usage: streamscribe <audio-file> [config.json]", file=sys.stderr)
        return 2

    logger.info(f"streamscribe v{__version__}")

    try:
        config_path = Path(args[1]) if len(args) > 1 else None
        config = PipelineConfig.from_dict(load_config(config_path))
        session = TranscriptionSession(config)
        session.on_partial_text = lambda index, text: logger.info(f"Chunk {index}: {text}")

        try:
            outcome = asyncio.run(session.transcribe_file(args[0]))
        finally:
            session.close()

    except StreamScribeError as e:
        logger.error(f"Transcription failed: {e}")
        return 1

    print(outcome.text)
    for index, error in sorted(outcome.failed.items()):
        logger.error(f"Chunk {index} failed: {error}")
    return 1 if outcome.failed else 0


if __name__ == "__main__":
    sys.exit(main())
