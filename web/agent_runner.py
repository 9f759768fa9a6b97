import asyncio
import json
import logging
import time

logger = logging.getLogger(__name__)

FRAME_RATE = 60
STREAM_RATE = 30


async def run_emulator(emulator, fps=FRAME_RATE):
    """Tick the emulator at real-time speed so paced key holds reach the game."""
    frame_time = 1 / fps
    logger.info(f"Starting emulator frame loop at {fps} fps")
    try:
        next_frame = time.monotonic()
        while True:
            emulator.tick(1)
            next_frame += frame_time
            delay = next_frame - time.monotonic()
            if delay < -frame_time * fps:
                # Fell more than a second behind; don't try to catch up
                next_frame = time.monotonic()
                delay = 0
            await asyncio.sleep(max(delay, 0))
    except asyncio.CancelledError:
        logger.info("Emulator frame loop cancelled")
        raise


async def stream_frames(emulator, send_frame, fps=STREAM_RATE):
    """Push the current screen to websocket clients."""
    try:
        while True:
            await send_frame(emulator.capture_frame(upscale=1))
            await asyncio.sleep(1 / fps)
    except asyncio.CancelledError:
        return


async def pump_events(controller, broadcast, claude_logger):
    """Forward controller events to websocket clients and the claude log."""
    while True:
        event = await controller.events.get()
        kind = event.get("type")
        if kind == "response":
            claude_logger.info(event.get("text", "").strip())
        elif kind == "inputs":
            claude_logger.info(f"Inputs: {', '.join(event.get('commands', []))}")
        elif kind == "error":
            claude_logger.warning(f"Error: {event.get('message')}")
        elif kind == "critical":
            claude_logger.error(f"CRITICAL: {event.get('message')}")
        try:
            await broadcast(json.dumps(event))
        except Exception as e:
            logger.error(f"Error broadcasting {kind} event: {e}")


async def run_agent(controller, emulator, broadcast, claude_logger):
    """Run the frame loop, frame stream and event pump until cancelled."""
    async def send_frame(frame: bytes):
        await broadcast(json.dumps({"type": "frame", "frame": frame.hex()}))

    tasks = [
        asyncio.create_task(run_emulator(emulator)),
        asyncio.create_task(stream_frames(emulator, send_frame)),
        asyncio.create_task(pump_events(controller, broadcast, claude_logger)),
    ]
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Agent runner was cancelled")
        raise
    finally:
        controller.stop()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
