"""
Polling of asynchronous cloud resources until a terminal state.

One loop, parameterized by a PollSpec, drives every wait in a build:
volume import, snapshot completion and image availability (including each
fan-out copy). The loop has no iteration cap; it ends on a success state,
an error state, an extraction error, or cancellation.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from ami_orch.config import POLL_INTERVAL_SECONDS
from ami_orch.core.cancel import CancellationToken
from ami_orch.core.xmltags import extract_one, find_one
from ami_orch.errors import ResourceStateError
from ami_orch.progress import NullProgress, ProgressReporter

logger = logging.getLogger("ami.core.poller")

ACTIVE_CONVERSION_MARKER = "<state>active</state>"
FAILED_CONVERSION_STATES = frozenset({"cancelling", "cancelled"})


class PollState(enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PollResult:
    status: str
    payload: Optional[str]
    polls: int


@dataclass(frozen=True)
class PollSpec:
    """
    What to read from a describe response and how to classify it.

    Classification order:
    1. ``completion(response)``: if given and it returns a value, the
       resource is done and that value is the payload.
    2. the ``status_tag`` value is extracted (absent tag is fatal);
       a value in ``success_values`` is done with the status as payload.
    3. ``failure(response)``: if given and it returns a reason, the resource failed.
    4. if ``pending_values`` is given, any value outside it is a failure;
       otherwise every remaining value means "keep waiting".
    """

    label: str
    status_tag: str
    success_values: frozenset[str] = frozenset()
    pending_values: Optional[frozenset[str]] = None
    completion: Optional[Callable[[str], Optional[str]]] = None
    failure: Optional[Callable[[str], Optional[str]]] = None

    def classify(self, response: str) -> tuple[PollState, str, Optional[str]]:
        if self.completion is not None:
            payload = self.completion(response)
            if payload is not None:
                return PollState.SUCCEEDED, "", payload

        status = extract_one(response, self.status_tag)
        if status in self.success_values:
            return PollState.SUCCEEDED, status, status

        if self.failure is not None:
            reason = self.failure(response)
            if reason is not None:
                return PollState.FAILED, f"{status} ({reason})", None

        if self.pending_values is not None and status not in self.pending_values:
            return PollState.FAILED, status, None

        return PollState.PENDING, status, None


def _imported_volume_id(response: str) -> Optional[str]:
    # Completion is inferred rather than read: the task must no longer be
    # active and its <volume> must carry an <id>.
    volume = extract_one(response, "volume")
    if ACTIVE_CONVERSION_MARKER in response:
        return None
    return find_one(volume, "id")


def _conversion_failed(response: str) -> Optional[str]:
    state = find_one(response, "state")
    if state in FAILED_CONVERSION_STATES:
        return f"conversion task {state}"
    return None


def volume_import_spec() -> PollSpec:
    return PollSpec(
        label="Importing volume",
        status_tag="statusMessage",
        completion=_imported_volume_id,
        failure=_conversion_failed,
    )


def snapshot_spec() -> PollSpec:
    return PollSpec(
        label="Creating snapshot",
        status_tag="status",
        success_values=frozenset({"completed"}),
        pending_values=frozenset({"pending"}),
    )


def image_spec(region: str) -> PollSpec:
    return PollSpec(
        label=f"Waiting for AMI in {region}",
        status_tag="imageState",
        success_values=frozenset({"available"}),
        pending_values=frozenset({"pending"}),
    )


class AsyncPoller:
    """Issue a describe call every ``interval`` seconds until the resource is terminal."""

    def __init__(
        self,
        interval: float = POLL_INTERVAL_SECONDS,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressReporter] = None,
    ):
        self.interval = interval
        self.cancel_token = cancel_token or CancellationToken()
        self.progress = progress or NullProgress()

    def with_token(self, cancel_token: CancellationToken) -> AsyncPoller:
        return AsyncPoller(self.interval, cancel_token, self.progress)

    def wait(self, spec: PollSpec, describe: Callable[[], str]) -> PollResult:
        """
        Poll until ``spec`` classifies a response as terminal.

        Args:
            spec: Status extraction and classification rules
            describe: Issues one describe call (already retry-wrapped) and returns the body

        Returns:
            PollResult with the final status and payload (e.g. the imported volume id)

        Raises:
            ResourceStateError: the resource reached an error state
            ExtractionError: the status tag was missing from a response
            BuildCancelledError: cancellation was requested
        """
        last_status: Optional[str] = None
        polls = 0

        while True:
            self.cancel_token.raise_if_cancelled()
            response = describe()
            polls += 1

            state, status, payload = spec.classify(response)

            if state is PollState.SUCCEEDED:
                if last_status is None:
                    self.progress.line(f"{spec.label}... done.")
                else:
                    self.progress.done()
                logger.info(f"{spec.label}: done", extra={"status": status, "payload": payload, "polls": polls})
                return PollResult(status=status, payload=payload, polls=polls)

            if state is PollState.FAILED:
                if last_status is not None:
                    self.progress.line()
                raise ResourceStateError(f"Bad status from {spec.label}: {status}")

            self._report(spec.label, status, last_status)
            if status != last_status:
                logger.debug(f"{spec.label}: {status}", extra={"status": status})
            last_status = status

            if self.cancel_token.wait(self.interval):
                self.progress.line()
                self.cancel_token.raise_if_cancelled()

    def _report(self, label: str, status: str, last_status: Optional[str]) -> None:
        if last_status is None:
            self.progress.write(f"{label}: {status}")
        elif status != last_status:
            self.progress.line()
            self.progress.write(f"{label}: {status}")
        else:
            self.progress.dot()
