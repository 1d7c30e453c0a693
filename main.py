import asyncio
import logging
import signal
from typing import Optional

import aiohttp
from dotenv import load_dotenv

from core.behaviors import EVENT_HANDLERS, MESSAGE_BEHAVIORS
from core.commands import REGISTRY
from core.config import load_bot_config
from core.connection import ConnectionManager
from core.credentials import DecodeError
from core.router import CommandRouter
from core.services import ExternalServices
from core.state import SettingsDocument, StateStore
from core.web import build_bot_app, start_site
from transports.base import OutboundMessage, load_transport_factory

log = logging.getLogger("vorte")

KEEPALIVE_INTERVAL = 300


async def keepalive(url: str, interval: float = KEEPALIVE_INTERVAL) -> None:
    timeout = aiohttp.ClientTimeout(total=30)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        while True:
            await asyncio.sleep(interval)
            try:
                async with session.get(url) as resp:
                    log.debug("keep-alive ping: HTTP %s", resp.status)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("keep-alive ping failed: %s", e)


async def main():
    load_dotenv()
    config = load_bot_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    try:
        factory = load_transport_factory(config.transport_factory)
    except (ImportError, ValueError) as exc:
        raise SystemExit(f"invalid TRANSPORT_FACTORY: {exc}") from exc

    store = StateStore(SettingsDocument(config.settings_path))
    services = ExternalServices(
        openai_api_key=config.openai_api_key,
        chat_model=config.openai_model,
        youtube_api_key=config.youtube_api_key,
        omdb_api_key=config.omdb_api_key,
    )
    router = CommandRouter(
        REGISTRY,
        store,
        config=config,
        services=services,
        behaviors=MESSAGE_BEHAVIORS,
        event_handlers=EVENT_HANDLERS,
    )
    manager = ConnectionManager(
        factory, config.session_folder, on_event=router.handle_event, on_closed=router.detach
    )

    if config.session_id:
        try:
            manager.restore_credentials(config.session_id)
        except DecodeError as exc:
            raise SystemExit(f"refusing to start: SESSION_ID {exc}") from exc

    async def notify(conversation_id: str, text: str) -> None:
        transport = manager.transport
        if transport is None:
            log.info("timeout notice for %s skipped: not connected", conversation_id)
            return
        await transport.send(conversation_id, OutboundMessage(text=text))

    runner = await start_site(build_bot_app(manager, config), config.port)
    router.start()
    store.start_sweeper(notify)
    manager.start()
    keepalive_task: Optional[asyncio.Task] = None
    if config.keepalive_url:
        keepalive_task = asyncio.create_task(keepalive(config.keepalive_url))
    log.info("%s v%s started, prefix %r", config.bot_name, config.version, config.prefix)

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    await stop_event.wait()
    log.info("shutting down")

    if keepalive_task is not None:
        keepalive_task.cancel()
        try:
            await keepalive_task
        except asyncio.CancelledError:
            pass
    await manager.stop()
    await router.stop()
    await store.stop()
    await services.close()
    await runner.cleanup()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
