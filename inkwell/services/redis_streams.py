"""
Redis Streams event log for Inkwell runs.
Every pipeline event is appended to a per-run stream so SSE clients can
replay what they missed and then follow new events.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional

import redis.asyncio as redis

from ..models import PipelineEvent

logger = logging.getLogger("inkwell.services.redis")


class RedisStreamsService:
    """Publishes pipeline events to Redis Streams and reads them back."""

    STREAM_EVENTS = "inkwell:events:{run_id}"

    # Streams of finished runs are kept for a day for late subscribers
    STREAM_TTL_SECONDS = 24 * 60 * 60

    def __init__(self, redis_url: str = "redis://localhost:6379"):
        self.redis_url = redis_url
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        self._client = redis.from_url(self.redis_url, decode_responses=True)
        await self._client.ping()

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    def _get_stream_key(self, run_id: str) -> str:
        return self.STREAM_EVENTS.format(run_id=run_id)

    @staticmethod
    def _decode(entry_id: str, fields: Dict[str, str]) -> Dict[str, Any]:
        return {
            "id": entry_id,
            "type": fields.get("type"),
            "run_id": fields.get("run_id"),
            "timestamp": fields.get("timestamp"),
            "data": json.loads(fields.get("data", "{}")),
        }

    async def publish_event(self, event: PipelineEvent, maxlen: int = 5000) -> str:
        """
        Append an event to its run's stream.

        Args:
            event: The pipeline event
            maxlen: Maximum stream length (older entries are trimmed)

        Returns:
            The stream entry ID
        """
        payload = event.to_payload()
        data = dict(payload["data"])
        if payload.get("role") is not None:
            data.setdefault("role", payload["role"])
        if payload.get("step_index") is not None:
            data.setdefault("step_index", payload["step_index"])

        stream_key = self._get_stream_key(event.run_id)
        entry_id = await self.client.xadd(
            stream_key,
            {
                "type": payload["type"],
                "run_id": event.run_id,
                "timestamp": payload["timestamp"],
                "data": json.dumps(data),
            },
            maxlen=maxlen,
        )

        if event.type.is_terminal:
            await self.client.expire(stream_key, self.STREAM_TTL_SECONDS)

        return entry_id

    async def get_events(
        self,
        run_id: str,
        start_id: str = "0",
        count: int = 1000,
    ) -> List[Dict[str, Any]]:
        """
        Get events from a run's stream.

        Args:
            run_id: Pipeline run identifier
            start_id: Read entries after this ID ("0" for everything)
            count: Maximum number of events to return
        """
        try:
            entries = await self.client.xrange(
                self._get_stream_key(run_id),
                min=f"({start_id}" if start_id != "0" else "-",
                max="+",
                count=count,
            )
        except redis.ResponseError:
            return []

        return [self._decode(entry_id, fields) for entry_id, fields in entries]

    async def stream_events(
        self,
        run_id: str,
        start_id: str = "$",
        block_ms: int = 5000,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Follow a run's stream. Yields a heartbeat event whenever block_ms
        passes without new entries.
        """
        stream_key = self._get_stream_key(run_id)
        last_id = start_id

        while True:
            try:
                entries = await self.client.xread({stream_key: last_id}, block=block_ms, count=50)

                if entries:
                    for _stream_name, stream_entries in entries:
                        for entry_id, fields in stream_entries:
                            last_id = entry_id
                            yield self._decode(entry_id, fields)
                else:
                    yield {
                        "id": "heartbeat",
                        "type": "heartbeat",
                        "run_id": run_id,
                        "timestamp": datetime.utcnow().isoformat(),
                        "data": {},
                    }

            except asyncio.CancelledError:
                break
            except redis.RedisError as e:
                logger.warning(f"Redis read failed for run {run_id}: {e}")
                await asyncio.sleep(1)
