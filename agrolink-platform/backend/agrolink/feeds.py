# agrolink/feeds.py
"""
Event sources for the Marketplace contract.

PollingFeed queries log ranges over HTTP on an interval; SubscriptionFeed
holds a websocket log subscription. Both hand normalized ChainEvents to the
same handler, so reconciliation does not care which transport is in use.
"""
import asyncio
import logging
import threading
from typing import Callable, Iterable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from tenacity import Retrying, before_sleep_log, stop_after_attempt, wait_exponential
from web3 import AsyncWeb3, WebSocketProvider
from web3.middleware import ExtraDataToPOAMiddleware

from agrolink.blockchain import contract_event, event_topic, marketplace_contract
from agrolink.cursor import BlockCursor, block_ranges
from agrolink.errors import ChainConnectionError, EventDecodeError
from agrolink.normalizer import ChainEvent, EventKind, normalize

log = logging.getLogger(__name__)

Handler = Callable[[ChainEvent], object]


def decode_or_skip(raw, kind: EventKind) -> Optional[ChainEvent]:
    try:
        return normalize(raw, kind)
    except EventDecodeError as e:
        log.warning("Dropping malformed %s event: %s", kind.value, e)
        return None


def chain_order(events: Iterable[ChainEvent]) -> List[ChainEvent]:
    """Sort by (block, log index); events missing either go first within their block."""
    return sorted(events, key=lambda e: (e.block_number or 0, e.log_index if e.log_index is not None else -1))


def deliver(handler: Handler, event: ChainEvent) -> None:
    try:
        handler(event)
    except Exception:
        log.exception("Handler failed for %s", event.describe())


class PollingFeed:
    def __init__(
        self,
        w3,
        contract,
        cursor: BlockCursor,
        handler: Handler,
        interval_seconds: float = 10.0,
        max_block_range: int = 2000,
        query_retries: int = 3,
        retry_wait: float = 1.0,
        kinds: Iterable[EventKind] = tuple(EventKind),
    ):
        self.w3 = w3
        self.contract = contract
        self.cursor = cursor
        self.handler = handler
        self.interval_seconds = interval_seconds
        self.max_block_range = max_block_range
        self.kinds = list(kinds)
        self.retrying = Retrying(
            stop=stop_after_attempt(max(1, query_retries)),
            wait=wait_exponential(multiplier=retry_wait, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )
        self.scheduler: Optional[BackgroundScheduler] = None
        self._in_flight = threading.Lock()

    def _query(self, kind: EventKind, from_block: int, to_block: int):
        return list(contract_event(self.contract, kind).get_logs(from_block=from_block, to_block=to_block))

    def poll(self, from_block: int, to_block: int) -> List[ChainEvent]:
        """All contract events in [from_block, to_block]; raises if any kind's query fails."""
        events = []
        for kind in self.kinds:
            logs = self.retrying(self._query, kind, from_block, to_block)
            for raw in logs:
                event = decode_or_skip(raw, kind)
                if event is not None:
                    events.append(event)
        return chain_order(events)

    def tick(self) -> int:
        """One polling pass. Returns the number of events delivered."""
        if not self._in_flight.acquire(blocking=False):
            log.warning("Previous poll still running, skipping this tick")
            return 0
        delivered = 0
        try:
            latest = self.w3.eth.block_number
            for from_block, to_block in self.cursor.chunks(latest, self.max_block_range):
                events = self.poll(from_block, to_block)
                for event in events:
                    deliver(self.handler, event)
                delivered += len(events)
                # only after every kind in the range was fetched
                self.cursor.advance(to_block)
                log.debug("Processed blocks %s-%s (%s events)", from_block, to_block, len(events))
        except Exception:
            log.exception("Polling error, blocks after %s will be retried next tick", self.cursor.last_checked)
        finally:
            self._in_flight.release()
        return delivered

    def start(self) -> None:
        log.info("Polling every %.1fs from block %s", self.interval_seconds, self.cursor.last_checked + 1)
        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(self.tick, "interval", seconds=self.interval_seconds, max_instances=1, coalesce=True)
        self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            log.info("Stopped poller")


class SubscriptionFeed:
    """
    Websocket log subscription, one per event kind.

    Each session first backfills [cursor+1, head] with range queries, which
    covers a configured start block and anything missed while disconnected.
    A dropped session reconnects with exponential backoff; failing to open
    the very first session is a startup failure and propagates.
    """

    def __init__(
        self,
        provider_url: str,
        contract_address: str,
        handler: Handler,
        start_block=None,
        max_block_range: int = 2000,
        reconnect_max_seconds: float = 60.0,
        initial_backoff: float = 1.0,
        resume_margin: int = 12,
        kinds: Iterable[EventKind] = tuple(EventKind),
        connect: Optional[Callable] = None,
    ):
        self.provider_url = provider_url
        self.contract_address = contract_address
        self.handler = handler
        self.start_block = start_block
        self.max_block_range = max_block_range
        self.reconnect_max_seconds = reconnect_max_seconds
        self.initial_backoff = initial_backoff
        # live events of different kinds can arrive out of block order,
        # so a resumed session rescans a few blocks behind the cursor
        self.resume_margin = resume_margin
        self.kinds = list(kinds)
        self.connect = connect or self._connect
        self.cursor: Optional[BlockCursor] = None
        self.sessions = 0
        self._live = False

    def _connect(self):
        w3 = AsyncWeb3(WebSocketProvider(self.provider_url))
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    async def run(self) -> None:
        delay = self.initial_backoff
        while True:
            self._live = False
            try:
                await self._session()
                raise ConnectionError("subscription stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self.sessions == 0:
                    raise ChainConnectionError(f"Cannot subscribe at {self.provider_url}: {e}") from e
                if self._live:
                    delay = self.initial_backoff
                log.warning("Subscription dropped (%s), reconnecting in %.1fs", e, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.reconnect_max_seconds)

    async def _session(self) -> None:
        async with self.connect() as w3:
            contract = marketplace_contract(w3, self.contract_address)
            routes = {}
            for kind in self.kinds:
                sub_id = await w3.eth.subscribe("logs", {"address": contract.address, "topics": [event_topic(kind)]})
                routes[sub_id] = kind

            head = await w3.eth.block_number
            resumed = self.cursor is not None
            if not resumed:
                self.cursor = BlockCursor.seed(self.start_block, lambda: head)
            self.sessions += 1
            self._live = True
            log.info("Subscribed to %s events at %s (session %s, head %s)",
                     len(routes), self.contract_address, self.sessions, head)

            margin = self.resume_margin if resumed else 0
            await self.backfill(contract, max(0, self.cursor.last_checked + 1 - margin), head)

            async for message in w3.socket.process_subscriptions():
                await self.on_message(contract, routes, message)

    async def backfill(self, contract, from_block: int, to_block: int) -> int:
        if to_block < from_block:
            return 0
        log.info("Backfilling blocks %s-%s", from_block, to_block)
        delivered = 0
        for start, stop in block_ranges(from_block, to_block, self.max_block_range):
            events = []
            for kind in self.kinds:
                logs = await contract_event(contract, kind).get_logs(from_block=start, to_block=stop)
                events.extend(e for e in (decode_or_skip(raw, kind) for raw in logs) if e is not None)
            for event in chain_order(events):
                await self._deliver(event)
            delivered += len(events)
            self.cursor.advance(stop)
        return delivered

    async def _deliver(self, event: ChainEvent) -> None:
        # the handler does blocking database and HTTP work; keep it off the loop
        await asyncio.to_thread(deliver, self.handler, event)

    async def on_message(self, contract, routes: dict, message) -> Optional[ChainEvent]:
        kind = routes.get(message.get("subscription"))
        if kind is None:
            log.debug("Ignoring message for unknown subscription %s", message.get("subscription"))
            return None
        try:
            raw = contract_event(contract, kind)().process_log(message["result"])
        except Exception:
            log.exception("Could not decode %s log", kind.value)
            return None
        event = decode_or_skip(raw, kind)
        if event is None:
            return None
        await self._deliver(event)
        self.cursor.observe(event.block_number)
        return event
