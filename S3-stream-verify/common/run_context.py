"""
Run context for tracking the state of a single verification run.
"""

import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class RunState(Enum):
    INIT = "init"
    REGION_RESOLVED = "region_resolved"
    BUCKET_VERIFIED = "bucket_verified"
    UPLOADED = "uploaded"
    DOWNLOADING = "downloading"
    CLEANED = "cleaned"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({RunState.PASSED, RunState.FAILED, RunState.SKIPPED})

ALLOWED_TRANSITIONS = {
    RunState.INIT: {RunState.REGION_RESOLVED, RunState.SKIPPED, RunState.FAILED},
    RunState.REGION_RESOLVED: {RunState.BUCKET_VERIFIED, RunState.SKIPPED, RunState.FAILED},
    RunState.BUCKET_VERIFIED: {RunState.UPLOADED, RunState.FAILED},
    RunState.UPLOADED: {RunState.DOWNLOADING, RunState.FAILED},
    RunState.DOWNLOADING: {RunState.DOWNLOADING, RunState.CLEANED, RunState.FAILED},
    RunState.FAILED: {RunState.CLEANED},
    RunState.CLEANED: {RunState.PASSED, RunState.FAILED},
    RunState.PASSED: set(),
    RunState.SKIPPED: set(),
}


class InvalidStateTransition(RuntimeError):
    """Raised when a run tries to move between two states that are not connected."""

    def __init__(self, current: RunState, target: RunState):
        self.current = current
        self.target = target
        super().__init__(f"Invalid run state transition: {current.value} -> {target.value}")


class RunContext:
    """Owns region, bucket, object key and state of one setup -> run -> teardown cycle."""

    def __init__(self):
        self.region: Optional[str] = None
        self.bucket_name: Optional[str] = None
        self.object_key: Optional[str] = None
        self.state: RunState = RunState.INIT
        self.current_chunk: Optional[int] = None
        self.failure: Optional[str] = None
        self.failed_chunk: Optional[int] = None
        self.skip_reason: Optional[str] = None
        self.cleanup_error: Optional[str] = None
        self.cleaned: bool = False
        self.history: List[Tuple[RunState, float]] = [(RunState.INIT, time.time())]

    def transition(self, target: RunState) -> None:
        """Move to ``target``, raising InvalidStateTransition if not allowed."""
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state, target)
        if target is RunState.FAILED and self.state is RunState.CLEANED and self.failure is None:
            raise InvalidStateTransition(self.state, target)
        self.state = target
        self.history.append((target, time.time()))
        logger.debug(f"Run state -> {target.value}")

    def resolve_region(self, region: str) -> None:
        self.region = region
        self.transition(RunState.REGION_RESOLVED)

    def verify_bucket(self, bucket_name: str) -> None:
        self.bucket_name = bucket_name
        self.transition(RunState.BUCKET_VERIFIED)

    def begin_chunk(self, index: int) -> None:
        self.current_chunk = index
        self.transition(RunState.DOWNLOADING)

    def skip(self, reason: str) -> None:
        self.skip_reason = reason
        self.transition(RunState.SKIPPED)

    def fail(self, message: str, chunk_index: Optional[int] = None) -> None:
        """Record the first failure; later failures keep the original message."""
        if self.failure is None:
            self.failure = message
            self.failed_chunk = chunk_index
        if self.state is not RunState.FAILED:
            self.transition(RunState.FAILED)

    def mark_cleaned(self) -> None:
        self.transition(RunState.CLEANED)
        self.cleaned = True

    def finish(self) -> RunState:
        """Move a cleaned run to its terminal outcome."""
        if self.state in TERMINAL_STATES:
            return self.state
        if self.state is RunState.CLEANED:
            self.transition(RunState.FAILED if self.failure else RunState.PASSED)
            return self.state
        raise InvalidStateTransition(self.state, RunState.PASSED)

    @property
    def needs_cleanup(self) -> bool:
        return self.object_key is not None and not self.cleaned

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def get_info(self) -> Dict[str, Any]:
        """Get current run information."""
        return {
            'region': self.region,
            'bucket_name': self.bucket_name,
            'object_key': self.object_key,
            'state': self.state.value,
            'current_chunk': self.current_chunk,
            'failure': self.failure,
            'failed_chunk': self.failed_chunk,
            'skip_reason': self.skip_reason,
            'cleanup_error': self.cleanup_error,
        }
