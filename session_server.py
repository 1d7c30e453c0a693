import asyncio
import logging
import signal

from dotenv import load_dotenv

from core.config import load_session_server_config
from core.pairing import PairingOrchestrator
from core.web import build_pairing_app, start_site
from transports.base import load_transport_factory

log = logging.getLogger("vorte.sessions")


async def main():
    load_dotenv()
    config = load_session_server_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    try:
        factory = load_transport_factory(config.transport_factory)
    except (ImportError, ValueError) as exc:
        raise SystemExit(f"invalid TRANSPORT_FACTORY: {exc}") from exc

    orchestrator = PairingOrchestrator(factory, config.sessions_dir)
    orchestrator.start()
    runner = await start_site(build_pairing_app(orchestrator), config.port)
    log.info("session server ready: http://localhost:%s/", config.port)

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
    await runner.cleanup()
    await orchestrator.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
