"""
BatchDownloadScheduler - paced, strictly sequential full-text downloads

Downloads run one at a time in caller order. Before every download the
scheduler waits a pre-download delay, and between consecutive items an
inter-item delay, both drawn from a PacingPolicy. One item failing never
stops the rest of the batch.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from ..cancellation import CancellationToken
from ..exceptions import RequestLimitError
from ..models import DownloadOutcome, DownloadState, OpenAccessInfo
from .orchestrator import DownloadOrchestrator

logger = logging.getLogger(__name__)


class PacingPolicy(ABC):
    """Produces the delays a batch waits between downloads."""

    @abstractmethod
    def pre_download(self, index: int, rng: random.Random) -> float:
        """Seconds to wait before downloading item `index`."""
        pass

    @abstractmethod
    def between_items(self, index: int, rng: random.Random) -> float:
        """Seconds to wait after item `index` when another item follows."""
        pass


class RandomPacing(PacingPolicy):
    """Uniformly random delays, 1-3 s before each download and 2-5 s between items."""

    def __init__(
        self,
        pre_download_range: Tuple[float, float] = (1.0, 3.0),
        between_items_range: Tuple[float, float] = (2.0, 5.0),
    ):
        self.pre_download_range = pre_download_range
        self.between_items_range = between_items_range

    def pre_download(self, index: int, rng: random.Random) -> float:
        return rng.uniform(*self.pre_download_range)

    def between_items(self, index: int, rng: random.Random) -> float:
        return rng.uniform(*self.between_items_range)


class NoPacing(PacingPolicy):
    """No delays."""

    def pre_download(self, index: int, rng: random.Random) -> float:
        return 0.0

    def between_items(self, index: int, rng: random.Random) -> float:
        return 0.0


class BatchDownloadScheduler:
    """Runs a bounded batch of downloads through one DownloadOrchestrator."""

    def __init__(
        self,
        orchestrator: DownloadOrchestrator,
        pacing: Optional[PacingPolicy] = None,
        max_batch_size: int = 10,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
        show_progress: bool = False,
    ):
        self.orchestrator = orchestrator
        self.pacing = pacing or RandomPacing()
        self.max_batch_size = max_batch_size
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.show_progress = show_progress
        self.delays: List[Tuple[str, int, float]] = []

    def _pause(self, stage: str, index: int, seconds: float,
               cancel_token: Optional[CancellationToken]) -> bool:
        """Wait; returns True if the batch was cancelled meanwhile."""
        self.delays.append((stage, index, seconds))
        if seconds <= 0:
            return cancel_token is not None and cancel_token.is_cancelled()
        logger.debug(f"Pacing: {stage} delay {seconds:.1f}s (item {index + 1})")
        if cancel_token is not None:
            return cancel_token.wait(seconds)
        self._sleep(seconds)
        return False

    def run(
        self,
        items: Sequence[OpenAccessInfo],
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        pacing: Optional[PacingPolicy] = None,
    ) -> List[DownloadOutcome]:
        """
        Download every open-access item in order.

        Args:
            items: Resolved open-access entries, at most max_batch_size
            force: Re-download items that are already saved
            cancel_token: Cancelling it (or its deadline expiring) fails the
                remaining items with reason "cancelled"
            pacing: Override the scheduler's pacing policy for this batch

        Returns:
            One DownloadOutcome per item, in input order

        Raises:
            RequestLimitError: If more than max_batch_size items are given
            ValueError: If an item is not open access
        """
        if len(items) > self.max_batch_size:
            raise RequestLimitError(
                f"Batch of {len(items)} exceeds the maximum of {self.max_batch_size} downloads"
            )
        for info in items:
            if not info.is_open_access:
                raise ValueError(f"PMID {info.pmid} is not open access")

        pacing = pacing or self.pacing
        self.delays = []
        outcomes: List[DownloadOutcome] = []
        cancelled = False

        logger.info(f"Starting batch of {len(items)} downloads")
        progress = tqdm(items, desc="Downloading", unit="file", disable=not self.show_progress)
        for index, info in enumerate(progress):
            if not cancelled and cancel_token is not None and cancel_token.is_cancelled():
                cancelled = True
            if not cancelled:
                cancelled = self._pause("pre_download", index, pacing.pre_download(index, self.rng), cancel_token)
            if cancelled:
                outcomes.append(DownloadOutcome(
                    pmid=info.pmid, state=DownloadState.FAILED, url=info.download_url, error="cancelled",
                ))
                continue

            try:
                outcome = self.orchestrator.download(
                    info.pmid,
                    info.download_url,
                    sources=info.sources,
                    force=force,
                    cancel_token=cancel_token,
                )
            except Exception as e:
                logger.exception(f"Download of PMID {info.pmid} raised")
                outcome = DownloadOutcome(
                    pmid=info.pmid, state=DownloadState.FAILED, url=info.download_url, error=str(e),
                )
            outcomes.append(outcome)
            progress.set_postfix_str(f"{info.pmid}: {outcome.state.value}")

            if index < len(items) - 1:
                cancelled = self._pause("between_items", index, pacing.between_items(index, self.rng), cancel_token)

        saved = sum(1 for o in outcomes if o.success)
        logger.info(f"Batch complete: {saved}/{len(items)} saved")
        return outcomes
