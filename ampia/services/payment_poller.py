"""
Payment status poller

Client-side driver for a mobile money purchase, the same state machine the
web checkout modal runs:

    idle -> initiating -> processing -> completed | failed | timed_out

Once a payment is processing, its status is fetched immediately and then
every ``interval`` seconds until the server reports a terminal status or
``max_attempts`` fetches have been made. ``cancel()`` stops watching; the
payment itself keeps going on the server and can be picked up again later
with a new poller for the same transaction reference.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import BaseModel

from ampia.services.logger import logger
from ampia.services.payment_service import is_valid_mobile_number

DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 60  # 5 minutes at the default interval

FAILED_MESSAGE = "Le paiement a échoué. Veuillez réessayer."
TIMEOUT_MESSAGE = "Délai d'attente dépassé. Vérifiez votre historique de paiements."
INVALID_NUMBER_MESSAGE = "Numéro Mobile Money invalide (format: 0XXXXXXXXX)"
INITIATE_ERROR_MESSAGE = "Erreur lors de l'initiation du paiement"


class PaymentState(str, Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = (PaymentState.COMPLETED, PaymentState.FAILED, PaymentState.TIMED_OUT)


class PollResult(BaseModel):
    state: PaymentState
    transaction_ref: Optional[str] = None
    attempts: int = 0
    cancelled: bool = False
    error: Optional[str] = None
    payment: Optional[Dict[str, Any]] = None


class PaymentStatusPoller:
    """Initiate a payment and watch its status through the AMPIA API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        transaction_ref: Optional[str] = None,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        api_prefix: str = "/api/payments",
        on_state_change: Optional[Callable[[PaymentState], None]] = None,
    ):
        self.client = client
        self.transaction_ref = transaction_ref
        self.interval = interval
        self.max_attempts = max_attempts
        self.api_prefix = api_prefix.rstrip("/")
        self.on_state_change = on_state_change
        self.attempts = 0
        self.last_payment: Optional[Dict[str, Any]] = None
        self._state = PaymentState.PROCESSING if transaction_ref else PaymentState.IDLE
        self._cancelled = asyncio.Event()

    @property
    def state(self) -> PaymentState:
        return self._state

    def _set_state(self, state: PaymentState) -> None:
        if state != self._state:
            self._state = state
            if self.on_state_change:
                self.on_state_change(state)

    def _result(self, error: Optional[str] = None) -> PollResult:
        return PollResult(
            state=self._state,
            transaction_ref=self.transaction_ref,
            attempts=self.attempts,
            cancelled=self._cancelled.is_set(),
            error=error,
            payment=self.last_payment,
        )

    def cancel(self) -> None:
        self._cancelled.set()

    async def initiate(
        self,
        ticket_type_id: int,
        quantity: int,
        mobile_number: str,
        currency: str = "CDF",
    ) -> PollResult:
        if not is_valid_mobile_number(mobile_number):
            return self._result(INVALID_NUMBER_MESSAGE)

        self._set_state(PaymentState.INITIATING)
        try:
            response = await self.client.post(
                f"{self.api_prefix}/initiate",
                json={
                    "ticketTypeId": ticket_type_id,
                    "quantity": quantity,
                    "mobileNumber": mobile_number,
                    "currency": currency,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._set_state(PaymentState.FAILED)
            return self._result(_error_message(e.response) or INITIATE_ERROR_MESSAGE)
        except httpx.HTTPError as e:
            self._set_state(PaymentState.FAILED)
            return self._result(str(e) or INITIATE_ERROR_MESSAGE)

        payment = (_json_object(response) or {}).get("payment") or {}
        if not payment.get("transactionRef"):
            self._set_state(PaymentState.FAILED)
            return self._result(INITIATE_ERROR_MESSAGE)

        self.transaction_ref = payment.get("transactionRef")
        self.last_payment = payment
        self._set_state(PaymentState.PROCESSING)
        return self._result()

    async def fetch_status(self) -> Optional[str]:
        """One status request; returns the server status, or None on error."""
        self.attempts += 1
        try:
            response = await self.client.get(
                f"{self.api_prefix}/status/{self.transaction_ref}"
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                f"Payment status poll {self.attempts} for {self.transaction_ref} failed: {e}"
            )
            return None

        body = _json_object(response)
        if body is None:
            logger.warning(
                f"Payment status poll {self.attempts} for {self.transaction_ref} "
                "returned a body that is not a JSON object"
            )
            return None

        self.last_payment = body
        return body.get("status")

    async def _wait(self) -> None:
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass

    async def poll(self) -> PollResult:
        if not self.transaction_ref:
            raise ValueError("No transaction reference to poll")
        if self._state in TERMINAL_STATES:
            return self._result()

        self._set_state(PaymentState.PROCESSING)

        while self.attempts < self.max_attempts and not self._cancelled.is_set():
            status = await self.fetch_status()

            if status == "completed":
                self._set_state(PaymentState.COMPLETED)
                return self._result()
            if status == "failed":
                self._set_state(PaymentState.FAILED)
                return self._result(FAILED_MESSAGE)

            if self.attempts < self.max_attempts:
                await self._wait()

        if self._cancelled.is_set():
            return self._result()

        self._set_state(PaymentState.TIMED_OUT)
        return self._result(TIMEOUT_MESSAGE)

    async def initiate_and_poll(
        self,
        ticket_type_id: int,
        quantity: int,
        mobile_number: str,
        currency: str = "CDF",
    ) -> PollResult:
        result = await self.initiate(ticket_type_id, quantity, mobile_number, currency)
        if result.state != PaymentState.PROCESSING:
            return result
        return await self.poll()


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _error_message(response: httpx.Response) -> Optional[str]:
    return (_json_object(response) or {}).get("message")
