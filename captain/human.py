"""
Human bridge (proactive optioning) for Captain.

A single-slot request/response channel. The orchestration thread calls
request_decision() and blocks; whoever answers (CLI prompt, chat bot,
test) calls respond() from another thread. At most one request is
outstanding at a time; a second request is rejected, never merged, and a
response that does not match the outstanding request is discarded.

The bridge transports options and the selection. It never ranks them.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Optional

from captain.errors import (
    HumanTimeoutError,
    InvalidSelectionError,
    OutstandingRequestError,
    StaleResponseError,
)
from captain.events.types import Topic
from captain.models import InteractionRequest, InteractionResponse, OptionChoice

if TYPE_CHECKING:
    from captain.events.bus import EventBus
    from captain.logger import CaptainLogger

logger = logging.getLogger(__name__)


def format_directive(request: InteractionRequest, option: OptionChoice) -> str:
    """
    Render the mandatory instruction injected ahead of the next step.

    Example:
        ### SOVEREIGN COMMAND
        [HUMAN DECISION: Use Option B]
    """
    return (
        "### SOVEREIGN COMMAND\n"
        f"[HUMAN DECISION: Use Option {option.label}]\n"
        f"Question: {request.question}\n"
        f"Selected: {option.label} - {option.description}\n"
        "You MUST strictly adhere to this choice. "
        "Do not attempt to re-triage or suggest alternatives."
    )


def render_request(request: InteractionRequest) -> str:
    """Plain-text rendering of a request with every trade-off."""
    lines = ["AMBIGUITY DETECTED: human decision required", request.question, ""]
    for opt in request.options:
        lines.append(f"Option {opt.label}: {opt.description}")
        if opt.pros:
            lines.append(f"  Pros: {', '.join(opt.pros)}")
        if opt.cons:
            lines.append(f"  Cons: {', '.join(opt.cons)}")
        if opt.impact:
            lines.append(f"  Impact: {opt.impact}")
        if opt.risk:
            lines.append(f"  Risk: {opt.risk}")
        if opt.effort:
            lines.append(f"  Effort: {opt.effort}")
        lines.append("")
    lines.append(f"Select an option ({'/'.join(request.labels)})")
    return "\n".join(lines)


class HumanBridge:
    """Blocking single-slot channel between the loop and a human."""

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        timeout_seconds: Optional[float] = None,
        logger: Optional[CaptainLogger] = None,
    ) -> None:
        self.bus = bus
        self.timeout_seconds = timeout_seconds
        self._logger = logger
        self._cond = threading.Condition()
        self._outstanding: Optional[InteractionRequest] = None
        self._correlation_id: Optional[str] = None
        self._response: Optional[InteractionResponse] = None

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "human_bridge"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    @property
    def outstanding(self) -> Optional[InteractionRequest]:
        """The request currently awaiting a response, if any."""
        with self._cond:
            return self._outstanding

    def request_decision(
        self,
        request: InteractionRequest,
        correlation_id: Optional[str] = None,
    ) -> OptionChoice:
        """
        Publish a request and block until it is answered.

        Returns:
            The selected option.

        Raises:
            OutstandingRequestError: If another request is outstanding.
            HumanTimeoutError: If an operator timeout is configured and expires.
        """
        with self._cond:
            if self._outstanding is not None:
                raise OutstandingRequestError(
                    f"Request {self._outstanding.request_id} is still outstanding"
                )
            self._outstanding = request
            self._correlation_id = correlation_id
            self._response = None

        self._log("human_request", request.to_dict())
        if self.bus is not None:
            try:
                self.bus.publish(
                    Topic.HUMAN_INTERACT,
                    {
                        "request_id": request.request_id,
                        "task_id": request.task_id,
                        "question": request.question,
                        "options": [opt.to_dict() for opt in request.options],
                    },
                    correlation_id=correlation_id,
                    source="human_bridge",
                )
            except Exception:
                with self._cond:
                    self._release()
                raise

        deadline = (
            None if self.timeout_seconds is None else time.monotonic() + self.timeout_seconds
        )
        with self._cond:
            try:
                while self._response is None:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        self._log("human_timeout", {"request_id": request.request_id}, level="warn")
                        raise HumanTimeoutError(
                            f"No decision for request {request.request_id} "
                            f"within {self.timeout_seconds}s"
                        )
                    self._cond.wait(remaining)
                response = self._response
            finally:
                self._release()

        option = request.option(response.selected_label)
        # respond() validated the label against this request.
        assert option is not None
        return option

    def _release(self) -> None:
        """Free the request slot. Caller holds the condition."""
        self._outstanding = None
        self._correlation_id = None
        self._response = None

    def respond(self, request_id: str, selected_label: str) -> OptionChoice:
        """
        Answer the outstanding request.

        Returns:
            The selected option.

        Raises:
            StaleResponseError: If request_id is not the outstanding request
                or it was already answered. The response is discarded.
            InvalidSelectionError: If the label is not one of the options.
        """
        with self._cond:
            request = self._outstanding
            if request is None or request.request_id != request_id or self._response is not None:
                logger.warning(
                    "Discarding stale response %r for request %s", selected_label, request_id
                )
                self._log(
                    "human_response_discarded",
                    {"request_id": request_id, "selected_label": selected_label},
                    level="warn",
                )
                raise StaleResponseError(
                    f"Request {request_id} is not awaiting a response", request_id=request_id
                )

            option = request.option(selected_label)
            if option is None:
                raise InvalidSelectionError(
                    f"'{selected_label}' is not one of {request.labels}"
                )
            correlation_id = self._correlation_id
            self._response = InteractionResponse(request_id=request_id, selected_label=option.label)
            self._cond.notify_all()

        self._log("human_response", {"request_id": request_id, "selected_label": option.label})
        if self.bus is not None:
            self.bus.publish(
                Topic.HUMAN_RESPONSE,
                {
                    "request_id": request_id,
                    "task_id": request.task_id,
                    "selected_label": option.label,
                    "directive": format_directive(request, option),
                },
                correlation_id=correlation_id,
                source="human_bridge",
            )
        return option
