"""Result aggregation for a reconciliation pass."""
import logging
from typing import Callable, Optional

from .schema import ActionOutcome, ReconciliationResult

logger = logging.getLogger(__name__)

# Exit codes handed to the calling process
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_DEVICE_FAILURE = 3

OutcomeListener = Callable[[ActionOutcome], None]


class ResultAggregator:
    """Append-only accumulator of per-device outcomes.

    The aggregator is the only writer of the outcome sequence. Listeners
    (for example the audit trail) are notified after each append.
    """

    def __init__(self, listeners: Optional[list[OutcomeListener]] = None):
        self._outcomes: list[ActionOutcome] = []
        self._listeners = list(listeners or [])

    def record(self, outcome: ActionOutcome) -> None:
        """Append an outcome."""
        self._outcomes.append(outcome)
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception as e:
                logger.warning(f"Outcome listener failed for {outcome.device_name}: {e}")

    @property
    def any_failure(self) -> bool:
        return any(not o.success for o in self._outcomes)

    def __len__(self) -> int:
        return len(self._outcomes)

    def result(self) -> ReconciliationResult:
        """Snapshot of everything recorded so far."""
        return ReconciliationResult(outcomes=tuple(self._outcomes))


def exit_code_for(result: ReconciliationResult) -> int:
    """Process exit code for a finished pass."""
    return EXIT_DEVICE_FAILURE if result.any_failure else EXIT_OK
