"""EventBridge client for outcome events."""

import logging
from typing import Any, Protocol

from classpoint_billing.core.exceptions import EventPublishError

logger = logging.getLogger(__name__)

# PutEvents accepts at most 10 entries per call
MAX_ENTRIES_PER_CALL = 10


class EventPublisher(Protocol):
    async def put_events(self, entries: list[dict[str, Any]]) -> None: ...


class EventBridgePublisher:
    """Sends PutEvents entries. Raises EventPublishError on any rejected entry."""

    def __init__(
        self,
        region_name: str,
        endpoint_url: str | None = None,
        session: Any = None,
    ):
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self._session = session

    def _get_session(self):
        if self._session is None:
            import aioboto3

            self._session = aioboto3.Session()
        return self._session

    async def put_events(self, entries: list[dict[str, Any]]) -> None:
        if not entries:
            return

        session = self._get_session()
        async with session.client(
            "events",
            region_name=self.region_name,
            endpoint_url=self.endpoint_url,
        ) as events:
            for start in range(0, len(entries), MAX_ENTRIES_PER_CALL):
                chunk = entries[start : start + MAX_ENTRIES_PER_CALL]
                response = await events.put_events(Entries=chunk)
                failed = response.get("FailedEntryCount", 0) or 0
                if failed:
                    errors = [
                        {
                            "error_code": entry.get("ErrorCode"),
                            "error_message": entry.get("ErrorMessage"),
                        }
                        for entry in response.get("Entries", [])
                        if entry.get("ErrorCode")
                    ]
                    logger.error("PutEvents rejected %d of %d entries: %s", failed, len(chunk), errors)
                    raise EventPublishError(failed, errors)

        logger.info("Published %d event(s)", len(entries))


def build_publisher(settings) -> EventBridgePublisher | None:
    """Publisher for the configured bus, or None when emission is disabled."""
    if not settings.events_enabled:
        return None
    return EventBridgePublisher(
        region_name=settings.aws_region,
        endpoint_url=settings.eventbridge_endpoint_url,
    )
