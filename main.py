import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn

import config
from claudemon.api_client import AnthropicTransport
from claudemon.controller import PlayerController
from claudemon.emulator import Emulator
from claudemon.session import load_session
from web.agent_runner import run_agent
from web.app import app, manager

# Create a unique log directory for this run
logs_dir = os.path.join(config.BASE_DIR, "logs")
current_time = datetime.now().strftime("%Y%m%d_%H%M%S")
run_log_dir = os.path.join(logs_dir, f"run_{current_time}")
os.makedirs(run_log_dir, exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(os.path.join(run_log_dir, "game.log")),
    ],
)

logger = logging.getLogger(__name__)

# Create a separate logger for Claude's messages
claude_logger = logging.getLogger("claude")
claude_logger.setLevel(logging.INFO)
claude_handler = logging.FileHandler(os.path.join(run_log_dir, "claude_messages.log"))
claude_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
claude_logger.addHandler(claude_handler)


def resolve_session(args):
    """Load the session document and apply command-line overrides."""
    session = load_session(args.session_file)
    if not session.api_credential:
        session.api_credential = os.environ.get("ANTHROPIC_API_KEY", "")
    if args.model:
        session.model_choice = args.model
    if args.thinking:
        session.thinking_enabled = True
    if args.search:
        session.search_enabled = True
    return session


@asynccontextmanager
async def lifespan(app):
    args = app.state.args
    app.state.run_log_dir = run_log_dir
    app.state.claude_logger = claude_logger

    emulator = Emulator(args.rom_path, headless=True, sound=False, state_file=args.telemetry_file)
    emulator.initialize()
    if args.save_state_path:
        emulator.load_state(args.save_state_path)
        logger.info(f"Loaded save state from {args.save_state_path}")

    session = resolve_session(args)
    controller = PlayerController(
        emulator,
        session,
        AnthropicTransport(session.api_credential),
        session_path=args.session_file,
        loop=asyncio.get_running_loop(),
        interval_ms=args.interval,
    )
    app.state.controller = controller
    app.state.agent_task = asyncio.create_task(
        run_agent(controller, emulator, manager.broadcast, claude_logger)
    )
    if args.autostart:
        controller.start()

    yield

    app.state.agent_task.cancel()
    try:
        await app.state.agent_task
    except asyncio.CancelledError:
        pass
    emulator.stop()


app.router.lifespan_context = lifespan


def absolute(path):
    if path is None or os.path.isabs(path):
        return path
    return os.path.join(config.BASE_DIR, path)


def main():
    parser = argparse.ArgumentParser(description="Claudemon - an LLM plays Pokemon through PyBoy")
    parser.add_argument("--rom", type=str, default="pokemon.gb", help="Path to the Pokemon ROM file")
    parser.add_argument("--port", type=int, default=3000, help="Port to run the web server on")
    parser.add_argument(
        "--model",
        type=str,
        choices=sorted(config.MODELS),
        default=None,
        help="Model to play with (overrides the saved session)",
    )
    parser.add_argument("--thinking", action="store_true", help="Enable extended thinking")
    parser.add_argument("--search", action="store_true", help="Allow [SEARCH: ...] web lookups")
    parser.add_argument("--session-file", type=str, default=config.SESSION_FILE, help="Session document path")
    parser.add_argument(
        "--telemetry-file",
        type=str,
        default=None,
        help="Read ground truth from a JSON file written by an emulator script instead of RAM",
    )
    parser.add_argument("--save-state", type=str, help="Path to a save state file to load")
    parser.add_argument(
        "--interval",
        type=int,
        default=config.LOOP_INTERVAL_MS,
        help="Milliseconds between turns",
    )
    parser.add_argument("--autostart", action="store_true", help="Start playing as soon as the server is up")

    args = parser.parse_args()

    rom_path = absolute(args.rom)
    if not os.path.exists(rom_path):
        logger.error(f"ROM file not found: {rom_path}")
        print("\nYou need to provide a Pokemon Red ROM file to run this program.")
        print("Place the ROM in the root directory or specify its path with --rom.")
        return

    save_state_path = absolute(args.save_state)
    if save_state_path and not os.path.exists(save_state_path):
        logger.error(f"Save state file not found: {save_state_path}")
        return

    args.rom_path = rom_path
    args.save_state_path = save_state_path
    args.session_file = absolute(args.session_file)
    args.telemetry_file = absolute(args.telemetry_file)
    app.state.args = args

    uvicorn.run(app, host="0.0.0.0", port=args.port)


if __name__ == "__main__":
    main()
