"""
Feelink Voice - conversation orchestration for the Feelink analysis backend.

=================================================================================
                        FLOW OVERVIEW
=================================================================================

    push notification ─┐                ┌─> BackendGateway (httpx)
                       v                │      /continue_test, /test,
              NotificationRouter ───> SessionHost ──> ConversationSession
                                                        │        │
    microphone / WebSocket audio / file replay          │        v
              │                                         │   AnnouncementSink
              v                                         v
    WhisperStreamingEngine ──> TranscriptionProvider ───┘
    (VAD gating + Whisper)      (partials, silence timeout, final)

Commands:
    serve   WebSocket server; clients drive sessions and stream audio
    ask     one voice turn from an audio file against a conversation or analysis
    notify  route a single notification payload
=================================================================================
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict

from loguru import logger

from feelink.announcer import LoggingAnnouncer
from feelink.audio_utils import FileAudioSource
from feelink.config import config
from feelink.gateway import BackendGateway
from feelink.host import SessionHost
from feelink.router import NotificationRouter
from feelink.server import WebSocketSessionServer
from feelink.session import SessionState
from feelink.speech_to_text import WhisperStreamingEngine
from feelink.transcription import TranscriptionProvider


def setup_logging(level: str) -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=level)


def build_gateway() -> BackendGateway:
    return BackendGateway(config.api_base_url, config.request_timeout, config.app_name)


def build_engine() -> WhisperStreamingEngine:
    return WhisperStreamingEngine(
        model_size=config.whisper_model_size,
        language=config.whisper_language,
        vad_aggressiveness=config.vad_aggressiveness,
        sample_rate=config.sample_rate,
    )


def print_event(event: Dict[str, Any]) -> None:
    if event.get("type") in ("partial", "transcript", "response", "result", "error"):
        print(json.dumps(event, ensure_ascii=False), flush=True)


async def run_serve(args) -> None:
    """Run the WebSocket server, optionally fed by the local microphone."""
    engine = build_engine()
    provider = TranscriptionProvider(engine, config.silence_timeout)
    server = WebSocketSessionServer(
        build_gateway(),
        provider,
        engine=engine,
        host=args.host or config.ws_host,
        port=args.port or config.ws_port,
        reply_timeout=config.reply_timeout,
        min_conversation_id_length=config.min_conversation_id_length,
    )

    microphone = None
    if args.microphone:
        from feelink.microphone import MicrophoneSource

        microphone = MicrophoneSource(sample_rate=config.sample_rate)
        microphone.start(engine.feed)

    try:
        await server.start_server()
    finally:
        if microphone is not None:
            microphone.cleanup()


async def run_ask(args) -> None:
    """Replay an audio file as one voice turn and print the session events."""
    engine = build_engine()
    provider = TranscriptionProvider(engine, config.silence_timeout)
    gateway = build_gateway()
    finished = asyncio.Event()

    def on_event(event: Dict[str, Any]) -> None:
        print_event(event)
        if event.get("type") == "state" and event.get("state") == SessionState.IDLE.value:
            finished.set()

    host = SessionHost(gateway, LoggingAnnouncer(), provider,
                       on_event=on_event, reply_timeout=config.reply_timeout)
    try:
        if args.analysis_id:
            session = await host.open_analysis(args.analysis_id)
        else:
            session = host.open_conversation(args.conversation_id)

        if not session.start_listening():
            logger.error("Could not start listening")
            return

        while not engine.is_listening:
            await asyncio.sleep(0.01)

        source = FileAudioSource(args.audio, sample_rate=config.sample_rate)
        await source.play(engine.feed, on_end=engine.end_of_audio, realtime=not args.fast)

        try:
            await asyncio.wait_for(finished.wait(), timeout=config.request_timeout + 30)
        except asyncio.TimeoutError:
            logger.error("Timed out waiting for the voice turn to finish")
    finally:
        host.dismiss()
        await gateway.close()


async def run_notify(args) -> None:
    """Route one notification payload through the router."""
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as e:
        logger.error(f"Payload is not valid JSON: {e}")
        return

    gateway = build_gateway()
    engine = build_engine()
    provider = TranscriptionProvider(engine, config.silence_timeout)
    host = SessionHost(gateway, LoggingAnnouncer(), provider,
                       on_event=print_event, reply_timeout=config.reply_timeout)
    router = NotificationRouter(host, config.min_conversation_id_length)
    try:
        route = await router.route(payload, action_identifier=args.action, user_text=args.text)
        print(json.dumps({"route": type(route).__name__}), flush=True)
    finally:
        host.dismiss()
        await gateway.close()


def main():
    parser = argparse.ArgumentParser(
        prog="feelink",
        description="Voice conversation client for the Feelink analysis backend",
    )
    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve", help="Run the WebSocket session server")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.add_argument("--microphone", action="store_true", help="Feed audio from the local microphone")

    p_ask = sub.add_parser("ask", help="Ask one spoken question from an audio file")
    target = p_ask.add_mutually_exclusive_group(required=True)
    target.add_argument("--conversation-id", default=None)
    target.add_argument("--analysis-id", default=None)
    p_ask.add_argument("--audio", required=True, help="Audio file with the question")
    p_ask.add_argument("--fast", action="store_true", help="Replay without real-time pacing")

    p_notify = sub.add_parser("notify", help="Route a notification payload")
    p_notify.add_argument("payload", help="Notification payload as JSON")
    p_notify.add_argument("--action", default=None, help="Action identifier, e.g. FEELINK_REPLY")
    p_notify.add_argument("--text", default=None, help="Typed reply text")

    args = parser.parse_args()
    setup_logging(config.log_level)

    if args.command == "serve":
        runner = run_serve(args)
    elif args.command == "ask":
        runner = run_ask(args)
    elif args.command == "notify":
        runner = run_notify(args)
    else:
        parser.print_help()
        return

    try:
        asyncio.run(runner)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
