"""Out-of-band response body retrieval.

Bodies are requested from the debugging session once navigation completes,
one request per finished request id, all in flight at once. A failed fetch is
never an error for the capture: it becomes an empty body record and a warning.
This usually happens for zero length and 204 (No Content) responses.
"""

import asyncio
import logging
from typing import Any, Iterable, List

from pydantic import ValidationError

from .recorder import EventRecorder
from ..models.capture import NETWORK_GET_RESPONSE_BODY, BodyRecord, FetchResult

logger = logging.getLogger(__name__)


class BodyFetcher:
    """Fetches response bodies and records them as synthetic events."""

    def __init__(self, session: Any, recorder: EventRecorder):
        """Initialize body fetcher.

        Args:
            session: Debugging session exposing ``send``
            recorder: Recorder the body events are appended through
        """
        self.session = session
        self.recorder = recorder

    async def fetch(self, request_id: str) -> FetchResult:
        """Request the body of one response.

        Args:
            request_id: Request to fetch the body for

        Returns:
            FetchResult holding the body record or the error
        """
        try:
            content = await self.session.send(
                NETWORK_GET_RESPONSE_BODY,
                {"requestId": request_id}
            )
            record = BodyRecord.model_validate({**(content or {}), "requestId": request_id})
            return FetchResult.success(record)
        except ValidationError as e:
            return FetchResult.failure(request_id, f"malformed body payload: {e.error_count()} errors")
        except Exception as e:
            return FetchResult.failure(request_id, e)

    async def fetch_body(self, request_id: str) -> FetchResult:
        """Fetch one body and append its event; never raises.

        Args:
            request_id: Request to fetch the body for

        Returns:
            The underlying FetchResult
        """
        result = await self.fetch(request_id)

        if not result.ok:
            logger.warning(f'No response data for request "{request_id}"')
            logger.debug(f"Body fetch for {request_id} failed: {result.error}")

        self.recorder.record_event(result.unwrap_or_empty().to_event())
        return result

    async def fetch_all(self, request_ids: Iterable[str]) -> List[FetchResult]:
        """Fetch every body concurrently and wait for all of them to settle.

        Args:
            request_ids: Requests to fetch bodies for

        Returns:
            One FetchResult per request id
        """
        request_ids = list(request_ids)
        if not request_ids:
            return []

        logger.debug(f"Fetching {len(request_ids)} response bodies")
        results = await asyncio.gather(*(self.fetch_body(rid) for rid in request_ids))

        failed = sum(1 for result in results if not result.ok)
        if failed:
            logger.debug(f"{failed} of {len(results)} body fetches failed")

        return list(results)
