"""Main application entry point for babyfoon."""

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import click
from pubsub import pub
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .audio.level import AudioLevelEstimator
from .config import BabyfoonConfig
from .errors import BabyfoonError
from .models.session import Role, SessionState, build_watch_link, parse_watch_link
from .services.directory_client import DirectoryClient, HttpDirectoryClient, LocalDirectoryClient
from .services.publisher import LOUD_NOISE_TOPIC, AUDIO_LEVEL_TOPIC, SESSION_STATE_TOPIC
from .services.session_machine import AudioSession
from .storage import create_storage
from .tokens.providers import HttpTokenProvider, LocalTokenProvider, TokenProvider
from .tokens.service import TokenService
from .transport import create_engine

logger = logging.getLogger(__name__)

console = Console()


def setup_logging(config: BabyfoonConfig, level: str = "INFO") -> Path:
    """Send every record to the configured log file, warnings also to a rich console handler."""
    log_file = Path(config.get('logging.file_path', 'data/logs/babyfoon.log'))
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.addHandler(file_handler)

    if config.get('logging.console_output', True):
        console_handler = RichHandler(console=Console(stderr=True), show_path=False)
        console_handler.setLevel(logging.WARNING)
        root_logger.addHandler(console_handler)

    logger.info(f"babyfoon {__version__} logging to {log_file} at {level.upper()}")
    return log_file


def build_token_provider(config: BabyfoonConfig) -> TokenProvider:
    """Use the remote token endpoint when configured, the local signer otherwise."""
    endpoint = config.get('token.endpoint', '')
    if endpoint:
        return HttpTokenProvider(endpoint)
    return LocalTokenProvider(TokenService.from_config(config))


def build_directory(config: BabyfoonConfig) -> DirectoryClient:
    endpoint = config.get('directory.endpoint', '')
    if endpoint:
        return HttpDirectoryClient(endpoint)
    logger.warning("No directory endpoint configured; channels are only visible to this process")
    return LocalDirectoryClient()


def _recorder_factory(config: BabyfoonConfig):
    def factory():
        from .audio.capture import PyAudioSegmentRecorder
        return PyAudioSegmentRecorder(
            sample_rate=int(config.get('audio.sample_rate', 16000)),
            frames_per_buffer=int(config.get('audio.frames_per_buffer', 1600)),
            channels=int(config.get('audio.channels', 1)),
        )
    return factory


def _player_factory():
    from .audio.playback import PyAudioPlayer
    return PyAudioPlayer()


def _level_bar(level: float, width: int = 20) -> str:
    filled = int(round(level * width))
    return "█" * filled + " " * (width - filled)


async def run_session(config: BabyfoonConfig, role: Role, channel_code: Optional[str],
                      duration: Optional[float]) -> SessionState:
    """Run one broadcast or listen session until ``duration`` elapses or it fails."""
    storage = create_storage(config)
    directory = build_directory(config)
    engine = create_engine(
        config,
        storage=storage,
        recorder_factory=_recorder_factory(config),
        player_factory=_player_factory,
    )
    estimator = AudioLevelEstimator(
        threshold=float(config.get('audio.loud_threshold', 0.7)),
        debounce_seconds=float(config.get('audio.alert_debounce_seconds', 10.0)),
    )
    session = AudioSession(
        engine,
        build_token_provider(config),
        directory,
        estimator=estimator,
        presence_check_seconds=float(config.get('directory.presence_check_seconds', 5.0)),
    )

    last_meter = [0.0]

    def on_state(event):
        style = "red" if event.current is SessionState.ERROR else "blue"
        reason = f" ({event.reason})" if event.reason else ""
        console.print(f"[{style}]{event.previous.value} → {event.current.value}{reason}[/{style}]")

    def on_level(event):
        now = time.monotonic()
        if now - last_meter[0] >= 1.0:
            last_meter[0] = now
            console.print(f"Audio: [{_level_bar(event.level)}] {event.level:.2f}")

    def on_loud(event):
        console.print(f"🔔 Loud noise detected (level {event.level:.2f})", style="bold red")

    pub.subscribe(on_state, SESSION_STATE_TOPIC)
    pub.subscribe(on_level, AUDIO_LEVEL_TOPIC)
    pub.subscribe(on_loud, LOUD_NOISE_TOPIC)
    try:
        await session.start(role, channel_code)
        if role is Role.BROADCASTER:
            console.print(f"📡 Broadcasting on code [bold]{session.channel_code}[/bold] "
                          f"({build_watch_link(session.channel_code)})", style="green")
        else:
            console.print(f"🎧 Listening to code [bold]{session.channel_code}[/bold]", style="green")

        started = time.monotonic()
        while session.state.is_joined:
            if duration and time.monotonic() - started >= duration:
                break
            await asyncio.sleep(0.5)
        return session.state
    finally:
        await session.stop()
        await directory.close()
        await storage.close()
        pub.unsubscribe(on_state, SESSION_STATE_TOPIC)
        pub.unsubscribe(on_level, AUDIO_LEVEL_TOPIC)
        pub.unsubscribe(on_loud, LOUD_NOISE_TOPIC)


def _fail(error: Exception) -> None:
    console.print(f"❌ Error: {error}", style="red")
    logging.error(f"Application error: {error}")
    sys.exit(1)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Path to configuration YAML file")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
              default=None, help="Override logging.level from the config")
@click.version_option(__version__, prog_name="babyfoon")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """babyfoon - live audio baby monitor."""
    try:
        config = BabyfoonConfig(config_path)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)
    setup_logging(config, log_level or config.get('logging.level', 'INFO'))
    ctx.obj = config


@cli.command()
@click.pass_obj
def serve(config: BabyfoonConfig) -> None:
    """Serve the token and channel directory endpoints."""
    from .server import run_server
    host = config.get('server.host')
    port = config.get('server.port')
    console.print(f"🚀 Serving on http://{host}:{port} (Ctrl+C to stop)", style="blue")
    run_server(config)


@cli.command("new-code")
@click.pass_obj
def new_code(config: BabyfoonConfig) -> None:
    """Allocate a free 4-digit channel code."""
    async def allocate() -> str:
        directory = build_directory(config)
        try:
            return await directory.allocate_code()
        finally:
            await directory.close()

    try:
        code = asyncio.run(allocate())
    except BabyfoonError as e:
        _fail(e)
    console.print(f"{code}  {build_watch_link(code)}", style="bold green")


@cli.command()
@click.option("--code", default=None, help="Channel code to broadcast on (allocated if omitted)")
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.pass_obj
def broadcast(config: BabyfoonConfig, code: Optional[str], duration: Optional[float]) -> None:
    """Broadcast the microphone as the monitor."""
    _run(config, Role.BROADCASTER, code, duration)


@cli.command()
@click.argument("code_or_link")
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.pass_obj
def listen(config: BabyfoonConfig, code_or_link: str, duration: Optional[float]) -> None:
    """Listen to a channel by code or watch link."""
    try:
        code = parse_watch_link(code_or_link)
    except BabyfoonError as e:
        _fail(e)
    _run(config, Role.AUDIENCE, code, duration)


def _run(config: BabyfoonConfig, role: Role, code: Optional[str], duration: Optional[float]) -> None:
    try:
        state = asyncio.run(run_session(config, role, code, duration))
    except KeyboardInterrupt:
        console.print("\n👋 Goodbye!")
        return
    except BabyfoonError as e:
        _fail(e)
    if state is SessionState.ERROR:
        sys.exit(1)


@cli.command()
@click.argument("channel")
@click.option("--role", type=click.Choice(["broadcaster", "audience"]), default="broadcaster")
@click.option("--uid", type=int, default=0, help="User id (0 = auto-assign)")
@click.pass_obj
def token(config: BabyfoonConfig, channel: str, role: str, uid: int) -> None:
    """Issue a join credential locally (for debugging)."""
    try:
        credential = TokenService.from_config(config).issue_token(channel, uid, Role[role.upper()])
    except BabyfoonError as e:
        _fail(e)
    console.print(f"Token:      {credential.token}")
    console.print(f"App id:     {credential.app_id}")
    console.print(f"Channel:    {credential.channel_name}")
    console.print(f"Uid:        {credential.uid}")
    console.print(f"Expires at: {int(credential.expires_at)}")


def main() -> None:
    """Main entry point for babyfoon."""
    cli()


if __name__ == "__main__":
    main()
