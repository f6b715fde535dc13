"""Completeness reconciliation between finished requests and body records.

Every request that finished loading must have exactly one body record in the
event log before synthesis. Requests whose body never made it into the log
are backfilled with an explicit empty body.
"""

import logging
from typing import AbstractSet, Set

from .recorder import EventRecorder
from ..models.capture import NETWORK_LOADING_FINISHED, BodyRecord

logger = logging.getLogger(__name__)


class CompletenessReconciler:
    """Backfills empty body records for finished requests that lack one."""

    def __init__(self, recorder: EventRecorder):
        self.recorder = recorder

    def reconcile(self, finished: AbstractSet[str], recorded: AbstractSet[str]) -> Set[str]:
        """Append an empty body event for each finished request without a body.

        Args:
            finished: Request ids that reached loading finished
            recorded: Request ids that already have a body record

        Returns:
            The request ids that were backfilled
        """
        missing = set(finished) - set(recorded)

        for request_id in sorted(missing):
            self.recorder.record_event(BodyRecord.empty(request_id).to_event())

        if missing:
            logger.debug(f"Backfilled empty bodies for {len(missing)} requests")

        return missing

    def tally(self) -> Set[str]:
        """Report loaded/body counts from the log, then reconcile.

        Returns:
            The request ids that were backfilled
        """
        loaded = self.recorder.log.request_ids(NETWORK_LOADING_FINISHED)
        bodies = self.recorder.body_ids()

        logger.info(f"Loaded: {len(loaded)} Bodies: {len(bodies)}")

        return self.reconcile(loaded, bodies)
