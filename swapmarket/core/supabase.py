import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from supabase import AsyncClient, Client, acreate_client, create_client

from .config import get_settings
from .realtime import Change, ChangeFeed
from .store import DocumentStore

logger = logging.getLogger(__name__)

# Tables whose changes are relayed from Supabase Realtime
REALTIME_TABLES = ("conversations", "messages", "trade_offers", "items")


def get_supabase_client() -> Client:
    """Get Supabase client instance."""
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_KEY must be set in environment variables"
        )
    return create_client(settings.supabase_url, settings.supabase_key)


def apply_filters(query, filters: Optional[Dict[str, Any]]):
    """Translate store filters to PostgREST filter calls."""
    for key, value in (filters or {}).items():
        if isinstance(value, dict):
            operator, expected = next(iter(value.items()))
            if operator == "eq":
                query = query.eq(key, expected)
            elif operator == "neq":
                query = query.neq(key, expected)
            elif operator == "in":
                query = query.in_(key, list(expected))
            elif operator == "contains":
                # Array fields are jsonb columns, so the operand must be JSON
                query = query.contains(key, json.dumps([expected]))
        else:
            query = query.eq(key, value)
    return query


def change_from_payload(payload: Dict[str, Any]) -> Optional[Change]:
    """
    Convert a Realtime ``postgres_changes`` payload to a feed change.

    Accepts both the raw server shape (``data.type``, ``record``,
    ``old_record``) and the flattened one (``eventType``, ``new``, ``old``).
    """
    data = payload.get("data", payload)
    kind = (data.get("type") or data.get("eventType") or "").lower()
    if kind not in ("insert", "update", "delete"):
        return None

    old = data.get("old_record", data.get("old")) or None
    new = data.get("record", data.get("new")) or None
    return Change(data.get("table"), kind, old, None if kind == "delete" else new)


class SupabaseRealtimeRelay:
    """
    Relays Supabase Realtime postgres changes onto a ChangeFeed.

    Writes from other workers, other instances and outside tools such as
    moderation reach live subscriptions this way. The relayed tables need
    ``REPLICA IDENTITY FULL`` so updates and deletes carry the old row.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        tables: Iterable[str] = REALTIME_TABLES,
        client: Optional[AsyncClient] = None,
    ):
        self.feed = feed
        self.tables = tuple(tables)
        self.client = client
        self.channel = None

    @property
    def running(self) -> bool:
        return self.channel is not None

    async def start(self) -> None:
        if self.client is None:
            settings = get_settings()
            self.client = await acreate_client(settings.supabase_url, settings.supabase_key)

        channel = self.client.channel("swapmarket-changes")
        for table in self.tables:
            channel.on_postgres_changes("*", callback=self.handle, table=table, schema="public")
        await channel.subscribe()
        self.channel = channel
        logger.info(f"Relaying Supabase Realtime changes for {', '.join(self.tables)}")

    def handle(self, payload: Dict[str, Any]) -> None:
        change = change_from_payload(payload)
        if change is None or change.table not in self.tables:
            logger.debug(f"Ignoring Realtime payload: {payload}")
            return
        self.feed.publish(change)

    async def stop(self) -> None:
        if self.channel is None:
            return
        await self.client.remove_channel(self.channel)
        self.channel = None


class SupabaseDocumentStore(DocumentStore):
    """
    Document store backed by Supabase tables.

    JSON columns hold the nested fields (``unread_count``, ``deleted_by``,
    ``participants``, ``data``). The client is synchronous, so every request
    runs in a worker thread to keep the event loop free.

    Once the Realtime relay is running, changes to the relayed tables reach
    the feed from Supabase, this process's own writes included; other tables
    are still published locally.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        feed: Optional[ChangeFeed] = None,
        relay: Optional[SupabaseRealtimeRelay] = None,
    ):
        super().__init__(feed)
        self.client = client or get_supabase_client()
        self.relay = relay or SupabaseRealtimeRelay(self.feed)

    async def start(self) -> None:
        try:
            await self.relay.start()
        except Exception as e:
            logger.error(f"Supabase Realtime unavailable, live updates limited to this process: {e}")

    async def close(self) -> None:
        await self.relay.stop()

    def _publish(self, change: Change) -> None:
        if self.relay.running and change.table in self.relay.tables:
            return
        super()._publish(change)

    async def _run(self, query) -> List[Dict[str, Any]]:
        try:
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error(f"Supabase request failed: {e}")
            raise
        return result.data or []

    async def _select(self, table, filters, order_by, limit) -> List[Dict[str, Any]]:
        query = apply_filters(self.client.table(table).select("*"), filters)
        for key, direction in (order_by or {}).items():
            query = query.order(key, desc=direction.lower() == "desc")
        if limit is not None:
            query = query.limit(limit)
        return await self._run(query)

    async def _insert(self, table, document) -> List[Dict[str, Any]]:
        return await self._run(self.client.table(table).insert(document))

    async def _insert_if_absent(self, table, document) -> List[Dict[str, Any]]:
        query = self.client.table(table).upsert(document, on_conflict="id", ignore_duplicates=True)
        return await self._run(query)

    async def _update(self, table, filters, data) -> List[Dict[str, Any]]:
        return await self._run(apply_filters(self.client.table(table).update(data), filters))

    async def _delete(self, table, filters) -> List[Dict[str, Any]]:
        return await self._run(apply_filters(self.client.table(table).delete(), filters))
