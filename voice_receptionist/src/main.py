#!/usr/bin/env python3
"""
Voice Receptionist - Inbound AI phone receptionist.

Answers calls streamed from Telnyx, with real-time speech recognition
and synthesis via Deepgram, and conversational AI via Amazon Bedrock.

Usage:
    python -m voice_receptionist
    python -m voice_receptionist --port 3100 --business-profile ./my-shop.json
"""

import argparse
import logging
import sys
from dataclasses import replace

import uvicorn

from .config import load_config
from .errors import ConfigurationError
from .websocket_server import app, build_session_manager, init_session_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the AI phone receptionist server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with settings from .env
    python -m voice_receptionist

    # Serve a different business
    python -m voice_receptionist --business-profile ./my-shop.json

    # Run with debug logging
    python -m voice_receptionist --debug
        """,
    )

    parser.add_argument(
        "--host",
        type=str,
        help="Server host (overrides SERVER_HOST env var)",
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Server port (overrides SERVER_PORT env var)",
    )

    parser.add_argument(
        "--business-profile",
        type=str,
        help="Path to the business profile JSON (overrides BUSINESS_PROFILE_PATH env var)",
    )

    parser.add_argument(
        "--voice",
        type=str,
        help="Deepgram TTS voice model (overrides DEEPGRAM_TTS_MODEL env var)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def main(argv=None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("deepgram").setLevel(logging.DEBUG)

    try:
        config = load_config()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.business_profile:
        config = replace(config, call=replace(config.call, business_profile_path=args.business_profile))
    if args.voice:
        config = replace(config, deepgram=replace(config.deepgram, tts_model=args.voice))

    host = args.host or config.server.host
    port = args.port or config.server.port

    try:
        init_session_manager(build_session_manager(config))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info(f"Starting server on {host}:{port}")
    logger.info(f"WebSocket endpoint: ws://{host}:{port}/telnyx")

    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="info" if not args.debug else "debug",
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
