# agrolink/watcher.py
"""
Marketplace chain watcher process.

    agrolink-watcher            # or: python -m agrolink.watcher

Exit codes: 0 on clean shutdown or when the watcher is not configured,
1 when startup fails (e.g. the RPC endpoint is unreachable).
"""
import asyncio
import logging
import signal
import sys
import threading

from agrolink import crud
from agrolink.blockchain import PULL, connect_http, marketplace_contract, select_transport
from agrolink.cursor import BlockCursor
from agrolink.errors import ConfigurationError
from agrolink.feeds import PollingFeed, SubscriptionFeed
from agrolink.reconciler import Reconciler
from agrolink.settings import Settings, settings as default_settings

log = logging.getLogger("watcher")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def check_config(cfg: Settings) -> None:
    if not cfg.BLOCKCHAIN_PROVIDER_URL or not cfg.MARKETPLACE_CONTRACT_ADDRESS:
        raise ConfigurationError("BLOCKCHAIN_PROVIDER_URL or MARKETPLACE_CONTRACT_ADDRESS not set")


def _install_signal_handlers(callback) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda signum, frame: callback())


def run_polling(cfg: Settings, reconciler: Reconciler) -> None:
    w3 = connect_http(cfg.BLOCKCHAIN_PROVIDER_URL)
    contract = marketplace_contract(w3, cfg.MARKETPLACE_CONTRACT_ADDRESS)
    log.info("Connected to contract at %s (provider: http/polling)", contract.address)

    cursor = BlockCursor.seed(cfg.BLOCKCHAIN_START_BLOCK, lambda: w3.eth.block_number)
    feed = PollingFeed(
        w3,
        contract,
        cursor,
        reconciler.apply,
        interval_seconds=cfg.BLOCKCHAIN_POLL_INTERVAL_MS / 1000,
        max_block_range=cfg.BLOCKCHAIN_MAX_BLOCK_RANGE,
        query_retries=cfg.BLOCKCHAIN_QUERY_RETRIES,
    )
    stopping = threading.Event()
    _install_signal_handlers(stopping.set)
    feed.start()
    try:
        stopping.wait()
    finally:
        feed.stop()


async def _run_subscription(feed: SubscriptionFeed) -> None:
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(feed.run())
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)
    try:
        await task
    except asyncio.CancelledError:
        log.info("Subscription cancelled")


def run_subscription(cfg: Settings, reconciler: Reconciler) -> None:
    log.info("Connecting to contract at %s (provider: websocket)", cfg.MARKETPLACE_CONTRACT_ADDRESS)
    feed = SubscriptionFeed(
        cfg.BLOCKCHAIN_PROVIDER_URL,
        cfg.MARKETPLACE_CONTRACT_ADDRESS,
        reconciler.apply,
        start_block=cfg.BLOCKCHAIN_START_BLOCK,
        max_block_range=cfg.BLOCKCHAIN_MAX_BLOCK_RANGE,
        reconnect_max_seconds=cfg.BLOCKCHAIN_RECONNECT_MAX_SECONDS,
    )
    asyncio.run(_run_subscription(feed))


def main(cfg: Settings = None) -> int:
    cfg = cfg or default_settings
    configure_logging(cfg.LOG_LEVEL)

    try:
        check_config(cfg)
    except ConfigurationError as e:
        log.warning("%s. Watcher will not start.", e)
        return 0

    try:
        crud.init_db()
        log.info("Database ready")
    except Exception:
        # keep going; later writes will surface the problem per event
        log.exception("Failed to initialize database in watcher")

    reconciler = Reconciler()
    try:
        if select_transport(cfg.BLOCKCHAIN_PROVIDER_URL) == PULL:
            log.info("RPC does not support subscriptions; running in polling mode")
            run_polling(cfg, reconciler)
        else:
            run_subscription(cfg, reconciler)
    except Exception:
        log.exception("Watcher failed")
        return 1
    finally:
        crud.dispose()

    log.info("Blockchain watcher stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
