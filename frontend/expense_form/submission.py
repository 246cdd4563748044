"""
Submission controller.

Runs one submission end to end::

    IDLE -> VALIDATING -> COMPOSING -> SUBMITTING -> IDLE

Validation errors stop before any document or network work. The payload is
built once and every retry re-sends those same bytes. Attempts are strictly
sequential with an exponential pause in between (1 s, 2 s, ...); the last
failure is re-raised inside the controller and turned into an outcome.

The HTTP layer sits behind ``RelayTransport`` so tests can swap in a fake and
a recording ``sleep``.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Dict, List, Optional, Protocol, Sequence, Tuple

import requests
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from expense_common.formatting import download_filename

from .composer import compose
from .config import ClientSettings
from .errors import (
    DocumentCompositionError,
    RelayError,
    RelayNetworkError,
    RelayServerError,
    RelayTimeoutError,
    SubmissionInProgressError,
)
from .payload import FilePart, RelayPayload, build_payload
from .state import FormState
from .totals import compute_totals
from .validator import ValidationError, validate

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    COMPOSING = "composing"
    SUBMITTING = "submitting"


class RelayReply(BaseModel):
    """JSON body returned by the relay."""

    model_config = ConfigDict(extra="allow")

    success: Optional[bool] = None
    status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    pdf_filename: Optional[str] = None
    total_amount: Optional[float] = None
    attachments_processed: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        if self.success is not None:
            return self.success
        return self.status == "success"


# ----------------------------------------------------------------------
# Outcomes
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SubmissionOutcome:
    ok: ClassVar[bool] = False

    def errors(self) -> List[ValidationError]:
        """(field, message) pairs for the page's error panel."""
        return []


@dataclass(frozen=True)
class Success(SubmissionOutcome):
    ok: ClassVar[bool] = True

    filename: str
    document: bytes
    reply: RelayReply
    attempts: int = 1


@dataclass(frozen=True)
class Invalid(SubmissionOutcome):
    validation_errors: Tuple[ValidationError, ...]

    def errors(self) -> List[ValidationError]:
        return list(self.validation_errors)


@dataclass(frozen=True)
class CompositionFailed(SubmissionOutcome):
    message: str

    def errors(self) -> List[ValidationError]:
        return [ValidationError("Document PDF", self.message)]


@dataclass(frozen=True)
class NetworkFailure(SubmissionOutcome):
    message: str

    def errors(self) -> List[ValidationError]:
        return [
            ValidationError(
                "Réseau",
                f"Impossible de joindre le serveur ({self.message}). "
                "Vérifiez votre connexion puis réessayez.",
            )
        ]


@dataclass(frozen=True)
class ServerError(SubmissionOutcome):
    status_code: int
    message: str

    def errors(self) -> List[ValidationError]:
        return [
            ValidationError(
                "Serveur",
                f"Erreur {self.status_code} : {self.message}. "
                "Réessayez plus tard ou contactez le trésorier.",
            )
        ]


@dataclass(frozen=True)
class Timeout(SubmissionOutcome):
    message: str

    def errors(self) -> List[ValidationError]:
        return [
            ValidationError(
                "Réseau",
                f"Le serveur n'a pas répondu à temps ({self.message}). Réessayez dans quelques instants.",
            )
        ]


# ----------------------------------------------------------------------
# Transport
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class HttpReply:
    status_code: int
    body: Optional[dict]
    text: str = ""


class RelayTransport(Protocol):
    def post(self, url: str, data: Dict[str, str], files: Sequence[FilePart], timeout: float) -> HttpReply:
        ...

    def probe(self, url: str, timeout: float) -> None:
        ...


class RequestsTransport:
    """``requests`` based transport; maps transport failures to relay errors."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def post(self, url: str, data: Dict[str, str], files: Sequence[FilePart], timeout: float) -> HttpReply:
        try:
            r = self.session.post(url, data=data, files=list(files), timeout=timeout)
        except requests.Timeout as exc:
            raise RelayTimeoutError(f"délai de {timeout:g} s dépassé") from exc
        except requests.RequestException as exc:
            raise RelayNetworkError(str(exc)) from exc

        try:
            body = r.json()
        except ValueError:
            body = None
        return HttpReply(r.status_code, body if isinstance(body, dict) else None, r.text)

    def probe(self, url: str, timeout: float) -> None:
        """Cheap reachability check: the relay answers OPTIONS without doing any work."""
        try:
            self.session.options(url, timeout=timeout)
        except requests.RequestException as exc:
            raise RelayNetworkError(str(exc)) from exc


def backoff_delay(attempt: int, base: float) -> float:
    """Pause after failed attempt ``attempt`` (1-based): base, 2*base, 4*base, ..."""
    return base * (2 ** (attempt - 1))


# ----------------------------------------------------------------------
# Controller
# ----------------------------------------------------------------------
class SubmissionController:
    """
    Single-flight submission of a form snapshot to the mail relay.

    ``on_download(filename, pdf_bytes)`` fires exactly once per confirmed
    success, never for a failed submission.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        transport: Optional[RelayTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        on_download: Optional[Callable[[str, bytes], None]] = None,
        on_state_change: Optional[Callable[[ControllerState], None]] = None,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ):
        self.settings = settings or ClientSettings()
        self.transport = transport or RequestsTransport()
        self._sleep = sleep
        self._on_download = on_download
        self._on_state_change = on_state_change
        self._clock = clock
        self._lock = threading.Lock()
        self._state = ControllerState.IDLE
        self.last_errors: List[ValidationError] = []

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _set_state(self, state: ControllerState) -> None:
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    def submit(self, form: FormState) -> SubmissionOutcome:
        """Validate, compose and send ``form``. Pass a ``FormStore.snapshot()``."""
        if not self._lock.acquire(blocking=False):
            raise SubmissionInProgressError("Une demande est déjà en cours d'envoi")
        try:
            outcome = self._run(form)
        finally:
            self._set_state(ControllerState.IDLE)
            self._lock.release()

        self.last_errors = outcome.errors()
        if outcome.ok:
            logger.info("Submission delivered for %s", form.full_name)
        else:
            logger.warning("Submission ended with %s", type(outcome).__name__)
        return outcome

    def _run(self, form: FormState) -> SubmissionOutcome:
        self._set_state(ControllerState.VALIDATING)
        errors = validate(form)
        if errors:
            logger.info("Validation failed with %d error(s)", len(errors))
            return Invalid(tuple(errors))

        if self.settings.probe_relay:
            try:
                self.transport.probe(self.settings.relay_url, self.settings.probe_timeout_seconds)
            except RelayError as exc:
                logger.warning("Relay %s unreachable: %s", self.settings.relay_url, exc)
                return NetworkFailure(str(exc))

        self._set_state(ControllerState.COMPOSING)
        totals = compute_totals(form)
        filename = download_filename(form.request_date, form.first_name, form.last_name, form.subject)
        try:
            document = compose(
                form,
                totals.expenses,
                totals.kilometric,
                generated_at=self._clock(),
                settings=self.settings,
            )
        except DocumentCompositionError as exc:
            return CompositionFailed(str(exc))
        payload = build_payload(form, totals, document, filename)

        self._set_state(ControllerState.SUBMITTING)
        try:
            reply, attempts = self._send_with_retry(payload)
        except RelayTimeoutError as exc:
            return Timeout(str(exc))
        except RelayServerError as exc:
            return ServerError(exc.status_code, exc.message)
        except RelayNetworkError as exc:
            return NetworkFailure(str(exc))

        if self._on_download:
            self._on_download(filename, document)
        return Success(filename=filename, document=document, reply=reply, attempts=attempts)

    def _send_with_retry(self, payload: RelayPayload) -> Tuple[RelayReply, int]:
        max_attempts = max(1, self.settings.max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._attempt(payload), attempt
            except RelayError as exc:
                if attempt >= max_attempts:
                    logger.error("Relay attempt %d/%d failed, giving up: %s", attempt, max_attempts, exc)
                    raise
                delay = backoff_delay(attempt, self.settings.backoff_seconds)
                logger.warning(
                    "Relay attempt %d/%d failed (%s), retrying in %.1fs", attempt, max_attempts, exc, delay
                )
                self._sleep(delay)

    def _attempt(self, payload: RelayPayload) -> RelayReply:
        http = self.transport.post(
            self.settings.relay_url,
            data=payload.data,
            files=payload.files,
            timeout=self.settings.timeout_seconds,
        )
        body = http.body or {}
        if not 200 <= http.status_code < 300:
            message = body.get("error") or body.get("message") or http.text[:200] or "réponse inattendue"
            raise RelayServerError(http.status_code, str(message), body)
        if http.body is None:
            raise RelayServerError(http.status_code, "réponse illisible du serveur")

        try:
            reply = RelayReply.model_validate(http.body)
        except PydanticValidationError as exc:
            raise RelayServerError(http.status_code, f"réponse illisible du serveur ({exc.error_count()} erreur(s))") from exc
        if not reply.succeeded:
            raise RelayServerError(http.status_code, reply.error or reply.message or "échec signalé par le serveur", body)
        return reply
