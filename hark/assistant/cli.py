"""Command-line entry point for the Hark assistant."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

from .actions import DeviceCommandExecutor, load_contacts
from .audio import MicrophoneStream, PcmPlayer
from .config import AssistantConfig
from .llm import GeminiGateway
from .mqtt import AssistantMqtt
from .orchestrator import OrchestrationEngine
from .session import ChatSession, EngineFactory, VoiceSession, prepare_image
from .tool_gate import KeywordToolGate
from .tools import ToolRegistry
from .wake_detector import WakeDetector
from .wyoming import WyomingSpeech

LOGGER = logging.getLogger("hark-assistant")

EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}
RESET_COMMANDS = {"/new", "/reset"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hark-assistant", description="Gemini-backed voice and chat assistant")
    parser.add_argument("--log-level", default=os.environ.get("HARK_LOG_LEVEL", "INFO"))
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Send one message and print the reply")
    ask.add_argument("text", nargs="+")

    image = subparsers.add_parser("image", help="Ask a question about an image file")
    image.add_argument("path", type=Path)
    image.add_argument("--prompt", default="")

    subparsers.add_parser("chat", help="Interactive text conversation on stdin")
    subparsers.add_parser("voice", help="Listen for the wake word and answer out loud")
    return parser


def build_engine_factory(
    config: AssistantConfig,
    mqtt: AssistantMqtt,
) -> tuple[EngineFactory, GeminiGateway]:
    """Wire executor, registry, gateway and gate; return a factory for fresh engines."""
    contacts = load_contacts(config.device.contacts_file)
    executor = DeviceCommandExecutor(
        mqtt,
        config.mqtt.topic_base,
        contacts=contacts,
        apps=config.device.apps,
    )
    registry = ToolRegistry(executor)
    gateway = GeminiGateway(config.gemini, registry)
    gate = KeywordToolGate(config.engine.tool_keywords)

    def factory() -> OrchestrationEngine:
        return OrchestrationEngine(
            gateway,
            registry,
            gate=gate,
            max_tool_depth=config.engine.max_tool_depth,
        )

    return factory, gateway


async def _run_ask(session: ChatSession, text: str) -> int:
    outcome = await session.ask(text)
    if outcome is None:
        return 1
    print(outcome.text)
    return 1 if outcome.is_error else 0


async def _run_image(session: ChatSession, path: Path, prompt: str) -> int:
    try:
        image = prepare_image(path.read_bytes())
    except (OSError, ValueError) as exc:
        print(f"Error: could not read image {path}: {exc}", file=sys.stderr)
        return 1
    outcome = await session.ask_with_image(prompt, image)
    if outcome is None:
        return 1
    print(outcome.text)
    return 1 if outcome.is_error else 0


async def _run_chat(session: ChatSession) -> int:
    print("Type a message; /new starts over, exit quits.")
    while True:
        try:
            line = await asyncio.to_thread(input, "you> ")
        except EOFError:
            break
        text = line.strip()
        if text.lower() in EXIT_COMMANDS:
            break
        if text.lower() in RESET_COMMANDS:
            session.new_conversation()
            print("(new conversation)")
            continue
        outcome = await session.ask(text)
        if outcome is not None:
            print(f"hark> {outcome.text}")
    return 0


async def _run_voice(config: AssistantConfig, factory: EngineFactory, mqtt: AssistantMqtt) -> int:
    mic = MicrophoneStream(config.mic)
    player = PcmPlayer()
    wake_detector = WakeDetector(config, mic)
    speech = WyomingSpeech.from_config(config, player, audio_guard=wake_detector.local_audio_block)
    session = VoiceSession(
        factory,
        config=config,
        mic=mic,
        wake_detector=wake_detector,
        speech=speech,
        publisher=mqtt,
    )

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(session.run(stop_event))
    await stop_event.wait()
    session.close()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task
    await player.stop()
    return 0


async def run(args: argparse.Namespace) -> int:
    config = AssistantConfig.from_env()
    if not config.gemini.has_credentials:
        LOGGER.warning("GEMINI_API_KEY is not set; every request will fail with a credentials error")
    mqtt = AssistantMqtt(config.mqtt, LOGGER)
    mqtt.connect()
    factory, gateway = build_engine_factory(config, mqtt)
    try:
        if args.command == "voice":
            return await _run_voice(config, factory, mqtt)
        session = ChatSession(
            factory,
            publisher=mqtt,
            topic_base=config.mqtt.topic_base,
            log_transcripts=config.log_transcripts,
        )
        if args.command == "ask":
            return await _run_ask(session, " ".join(args.text))
        if args.command == "image":
            return await _run_image(session, args.path, args.prompt)
        return await _run_chat(session)
    finally:
        await gateway.close()
        mqtt.disconnect()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
