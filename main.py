#!/usr/bin/env python3
"""
StreamGuard - Local Entry Point
===============================

Runs the moderation engine against chat lines read from stdin, for local
testing without a chat transport.

Input format, one per line:
    username[:role] message text     moderate a chat message
    #raid <raider> <viewers>         assess a raid
    #follow <user> <age_days> <rate> check a new follower
    #trust <user> / #untrust <user>  trust registry
    #forgive <user>                  reset escalation
    #warn <user> [reason]            manual warning
    #ban-word <phrase>               add a banned word
    #stats                           moderation summary
    #sweep                           run the maintenance sweep now
"""

import asyncio
import sys

from dotenv import load_dotenv

from streamguard.core.config import ConfigValidationError, validate_and_log_config
from streamguard.core.logger import logger
from streamguard.moderation import JsonFilePersistence, ModerationEngine
from streamguard.services.classifier import OpenAIClassifier


async def handle_command(engine: ModerationEngine, line: str) -> None:
    """Run one '#' operator command."""
    command, _, rest = line[1:].partition(" ")
    args = rest.split()

    if command == "raid" and len(args) == 2:
        assessment = await engine.handle_raid(args[0], int(args[1]))
        print(f"raid: safe={assessment.safe} action={assessment.action} reasons={assessment.reasons}")
    elif command == "follow" and len(args) == 3:
        result = await engine.check_follower(args[0], int(args[1]), int(args[2]))
        print(f"follow: suspicious={result.suspicious} reason={result.reason}")
    elif command == "trust" and args:
        print((await engine.trust(args[0])).message)
    elif command == "untrust" and args:
        print((await engine.untrust(args[0])).message)
    elif command == "forgive" and args:
        print((await engine.forgive(args[0])).message)
    elif command == "warn" and args:
        total = await engine.warn(args[0], " ".join(args[1:]))
        print(f"{args[0]} warned, total warnings: {total}")
    elif command == "ban-word" and rest.strip():
        print((await engine.add_banned_word(rest)).message)
    elif command == "stats":
        print(engine.get_moderation_stats())
    elif command == "sweep":
        await engine.sweep()
    else:
        print(f"unknown command: {line}")


async def handle_line(engine: ModerationEngine, line: str) -> None:
    """Moderate one 'username[:role] message' line."""
    sender, _, message = line.partition(" ")
    username, _, role = sender.partition(":")
    verdict = await engine.moderate_message(message, username, role or "everyone")
    if verdict is not None:
        print(f"{verdict.username}: {verdict.action} ({verdict.duration}s) - {verdict.reason}")


async def main() -> None:
    """
    Run the engine until stdin closes.

    Raises:
        SystemExit: If configuration is invalid.
    """
    load_dotenv()

    try:
        config = validate_and_log_config()
    except ConfigValidationError as e:
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    logger.set_webhook(config.error_webhook_url)

    classifier = OpenAIClassifier(
        config.openai_api_key,
        model=config.classifier_model,
        request_timeout=config.classifier_timeout,
    )
    engine = ModerationEngine(
        classifier=classifier,
        persistence=JsonFilePersistence(config.data_file),
        config=config,
    )
    await engine.load()
    await engine.start()
    logger.success("StreamGuard ready, reading chat from stdin")

    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                if line.startswith("#"):
                    await handle_command(engine, line)
                else:
                    await handle_line(engine, line)
            except ValueError as e:
                logger.warning("Rejected Input", [
                    ("Line", line[:100]),
                    ("Error", str(e)[:100]),
                ])
    finally:
        await engine.stop()
        await classifier.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("🛑 StreamGuard stopped by user (Ctrl+C)")
