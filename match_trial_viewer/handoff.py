"""Parameter handoff between a viewer and a viewer window it opened.

The opener polls the new window's port until it listens, then posts one JSON
message carrying the trial parameters. A window that never becomes ready is
abandoned after a bounded number of retries; it stays usable for manual entry.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from .models import TrialParameters

if TYPE_CHECKING:
    from .session import Scheduler

log = logging.getLogger(__name__)

INIT_NEW_TRIAL_FORM = "initNewTrialForm"
RETRY_INTERVAL_MS = 500
MAX_RETRIES = 3


class HandoffOutcome(Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    ABANDONED = "abandoned"


def encode_init_message(parameters: TrialParameters) -> str:
    return json.dumps({"type": INIT_NEW_TRIAL_FORM, "parameters": parameters.to_json()})


class HandoffPort:
    def __init__(self) -> None:
        self._handler: Optional[Callable[[TrialParameters], None]] = None

    @property
    def ready(self) -> bool:
        return self._handler is not None

    def listen(self, handler: Callable[[TrialParameters], None]) -> None:
        self._handler = handler

    def close(self) -> None:
        self._handler = None

    def post_message(self, message: str) -> None:
        if self._handler is None:
            raise RuntimeError("Handoff port is not listening.")
        data = json.loads(message)
        kind = data.get("type")
        if kind != INIT_NEW_TRIAL_FORM:
            log.warning(f"Ignoring handoff message of unknown type {kind!r}")
            return
        self._handler(TrialParameters.from_json(data["parameters"]))


class TrialHandoff:
    def __init__(
        self,
        port: HandoffPort,
        parameters: TrialParameters,
        scheduler: Scheduler,
        interval_ms: int = RETRY_INTERVAL_MS,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self.port = port
        self.parameters = parameters
        self.scheduler = scheduler
        self.interval_ms = interval_ms
        self.max_retries = max_retries
        self.outcome = HandoffOutcome.PENDING
        self.attempts = 0

    def start(self) -> None:
        self._attempt(0)

    def _attempt(self, retry_count: int) -> None:
        self.attempts += 1
        if self.port.ready:
            self.port.post_message(encode_init_message(self.parameters))
            self.outcome = HandoffOutcome.DELIVERED
            log.debug(f"Handed trial parameters to new window after {retry_count} retries")
        elif retry_count < self.max_retries:
            self.scheduler.call_later(self.interval_ms, lambda: self._attempt(retry_count + 1))
        else:
            self.outcome = HandoffOutcome.ABANDONED
            log.info(f"stopping init attempts after {retry_count} retries")
