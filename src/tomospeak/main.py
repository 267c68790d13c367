"""Main entry point for TomoSpeak."""

import argparse
import asyncio
import logging
import sys

from .audio_manager import AudioLifecycleManager, TempFileHandleFactory
from .config import TomoSpeakConfig
from .controller import ConversationController
from .conversation_proxy import GeminiConversationProxy, HttpConversationClient
from .errors import SendError
from .models import ChatMessage
from .prompts import load_system_prompt
from .speech_proxy import ElevenLabsSpeechProxy, HttpSpeechClient
from .state import LessonStore

HELP_TEXT = """Commands:
  /retry     resend your last message after an error
  /reset     start a new lesson
  /play      replay the latest assistant audio
  /audio     retry speech for the latest assistant message
  /progress  show lesson progress
  /quit      leave the lesson"""


def _build_direct_backends(config: TomoSpeakConfig):
    """Gemini and ElevenLabs proxies running in this process."""
    gemini_key = config.gemini_api_key()
    if not gemini_key:
        print("Error: GEMINI_API_KEY environment variable not set")
        sys.exit(1)
    elevenlabs_key = config.elevenlabs_api_key()
    if not elevenlabs_key:
        print("Error: ELEVENLABS_API_KEY environment variable not set")
        sys.exit(1)

    conversation = GeminiConversationProxy.from_config(
        config.chat, gemini_key, load_system_prompt(config.chat.system_prompt_path)
    )
    speech = ElevenLabsSpeechProxy.from_config(config.speech, elevenlabs_key)
    return conversation, speech


def _build_player(enabled: bool):
    if not enabled:
        return None
    try:
        from .playback import SoundDevicePlayer
    except (ImportError, OSError) as e:
        print(f"Warning: audio playback unavailable ({e}); continuing without sound")
        return None
    return SoundDevicePlayer()


def _print_message(message: ChatMessage) -> None:
    label = "tutor" if message.role == "assistant" else "you"
    print(f"\n[{label} {message.created_at.astimezone():%H:%M}]")
    print(message.content)


def _print_progress(progress: int | None) -> None:
    value = progress or 0
    filled = value // 5
    print(f"\nLesson progress [{'#' * filled}{'.' * (20 - filled)}] {value}%")


async def _send(controller: ConversationController, text: str, retry: bool = False) -> None:
    print("AI is typing...")
    try:
        if retry:
            reply = await controller.retry()
        else:
            reply = await controller.send(text)
    except SendError as e:
        print(f"! {e}")
        if controller.can_retry:
            print("  Type /retry to resend your message.")
        return

    if reply is not None:
        _print_message(reply)
        _print_progress(controller.progress)


async def _chat_loop(controller: ConversationController) -> None:
    """Read learner input until /quit or EOF."""
    while True:
        try:
            line = await asyncio.to_thread(input, "\nyou> ")
        except EOFError:
            break

        command = line.strip().lower()
        last = controller.last_assistant

        if command in ("/quit", "/exit"):
            break
        elif command == "/help":
            print(HELP_TEXT)
        elif command == "/reset":
            for message in await controller.reset():
                _print_message(message)
            _print_progress(controller.progress)
        elif command == "/progress":
            _print_progress(controller.progress)
        elif command == "/retry":
            if not controller.can_retry:
                print("Nothing to retry.")
                continue
            await _send(controller, "", retry=True)
        elif command == "/play":
            if last is None or not await controller.audio.play(last.id):
                print("Audio is not ready yet.")
        elif command == "/audio":
            state = controller.audio.get_state(last.id) if last else None
            if last is None or (state is not None and state.status != "error"):
                print("Pronunciation is already available or loading.")
                continue
            controller.audio.ensure_audio(last)
            print("Generating pronunciation...")
        else:
            await _send(controller, line)


async def run_chat(
    config_path: str = ".tomospeak/config.yaml",
    server_url: str | None = None,
    direct: bool = False,
    audio_enabled: bool = True,
) -> None:
    """Run an interactive lesson in the terminal.

    Args:
        config_path: Path to config file
        server_url: TomoSpeak server URL (overrides config)
        direct: Call Gemini and ElevenLabs from this process instead of a server
        audio_enabled: Play assistant speech on the local output device
    """
    config = TomoSpeakConfig.load(config_path)

    if direct:
        conversation, speech = _build_direct_backends(config)
    else:
        base_url = server_url or config.server_url
        # Client budget is enforced by the controller; keep the transport looser
        conversation = HttpConversationClient(base_url, timeout=config.request_timeout + 5)
        speech = HttpSpeechClient(base_url)

    store = LessonStore(config.db_path)
    audio = AudioLifecycleManager(
        speech,
        player=_build_player(audio_enabled),
        handles=TempFileHandleFactory(config.audio_dir),
        autoplay=config.autoplay,
    )
    controller = ConversationController(
        store, conversation, audio, request_timeout=config.request_timeout
    )

    try:
        print("TomoSpeak: your friendly AI learning companion. Type /help for commands.")
        for message in await controller.initialize():
            _print_message(message)
        _print_progress(controller.progress)

        await _chat_loop(controller)
    finally:
        await controller.teardown()
        store.close()
        await conversation.close()
        await speech.close()


def run_server(
    config_path: str = ".tomospeak/config.yaml",
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the conversation/speech proxy server."""
    config = TomoSpeakConfig.load(config_path)

    from .server import create_app

    gemini_key = config.gemini_api_key()
    conversation = None
    if gemini_key:
        conversation = GeminiConversationProxy.from_config(
            config.chat, gemini_key, load_system_prompt(config.chat.system_prompt_path)
        )
    else:
        print("Warning: GEMINI_API_KEY not set, /api/chat will return MISSING_API_KEY")

    elevenlabs_key = config.elevenlabs_api_key()
    speech = None
    if elevenlabs_key:
        speech = ElevenLabsSpeechProxy.from_config(config.speech, elevenlabs_key)
    else:
        print("Warning: ELEVENLABS_API_KEY not set, /api/tts will return MISSING_TTS_API_KEY")

    app = create_app(conversation_proxy=conversation, speech_proxy=speech, config=config)

    import uvicorn

    uvicorn.run(
        app,
        host=host or config.server_host,
        port=port or config.server_port,
        log_level="info",
    )


def cli() -> None:
    """Command-line interface entry point."""
    parser = argparse.ArgumentParser(
        description="TomoSpeak - conversational language lessons",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the proxy server, then a lesson against it
  tomospeak serve --port 8000
  tomospeak chat --server-url http://localhost:8000

  # Lesson without a server
  tomospeak chat --direct

Environment variables:
  GEMINI_API_KEY       Gemini API key (server, or chat --direct).
  ELEVENLABS_API_KEY   ElevenLabs API key (server, or chat --direct).
  ELEVENLABS_VOICE_ID  Optional voice override.
""",
    )
    parser.add_argument(
        "--config",
        default=".tomospeak/config.yaml",
        help="Path to config file (default: .tomospeak/config.yaml)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    chat_parser = subparsers.add_parser("chat", help="Start an interactive lesson")
    chat_parser.add_argument("--server-url", help="TomoSpeak server URL (default: from config)")
    chat_parser.add_argument(
        "--direct",
        action="store_true",
        help="Call Gemini and ElevenLabs directly instead of a server",
    )
    chat_parser.add_argument("--no-audio", action="store_true", help="Disable speech playback")

    serve_parser = subparsers.add_parser("serve", help="Run the proxy server")
    serve_parser.add_argument("--host", help="Bind address (default: from config)")
    serve_parser.add_argument("--port", type=int, help="Port (default: from config)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        run_server(config_path=args.config, host=args.host, port=args.port)
        return

    try:
        asyncio.run(run_chat(
            config_path=args.config,
            server_url=args.server_url,
            direct=args.direct,
            audio_enabled=not args.no_audio,
        ))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    cli()
