"""
Staged registration controller.

Drives one registration attempt across the entry screen and the code screen:

    ENTERING -> STAGED -> AWAITING_CODE -> SUBMITTING -> VERIFYING -> DONE
    ENTERING | STAGED | AWAITING_CODE -> ABANDONED

The account is created before the code is verified. A failed verification
after a successful registration still leaves a usable account, so DONE carries
a three-way SubmissionOutcome instead of a boolean.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests
from pydantic import BaseModel

from config.settings import PortalSettings
from persistence.crypto import FieldCipher
from persistence.draft_store import DraftStore
from persistence.session_storage import MemorySessionStorage, SessionStorage
from registration.errors import (
    ActionInProgress,
    DraftStoreError,
    InvalidTransition,
    RegistrationError,
    ValidationError,
)
from registration.graph import RegistrationGraphFactory
from registration.otp_code import OtpCodeInput
from registration.state import (
    FlowState,
    OtpChallenge,
    OutcomeKind,
    RegistrationForm,
    SubmissionOutcome,
    LoadedDraft,
    RESEND_COOLDOWN_SECONDS,
)
from registration.timer import ResendTimer, Scheduler
from registration.validator import RegistrationValidator
from services.otp_gateway import OtpGatewayClient
from services.submitter import RegistrationSubmitter

logger = logging.getLogger(__name__)

ABANDONABLE = (FlowState.ENTERING, FlowState.STAGED, FlowState.AWAITING_CODE)
TERMINAL = (FlowState.DONE, FlowState.ABANDONED)


class StagedRegistrationController:
    def __init__(
        self,
        store: DraftStore,
        gateway: OtpGatewayClient,
        submitter: RegistrationSubmitter,
        scheduler: Scheduler,
        validator: Optional[RegistrationValidator] = None,
        cooldown: int = RESEND_COOLDOWN_SECONDS,
        on_change: Optional[Callable[[FlowState, FlowState], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.validator = validator or RegistrationValidator()
        self.on_change = on_change
        self.on_tick = on_tick

        factory = RegistrationGraphFactory(self.validator, store, gateway, submitter)
        self._entry = factory.compile_entry()
        self._verification = factory.compile_verification()

        self.timer = ResendTimer(scheduler, cooldown=cooldown, on_tick=self._tick)
        self.code = OtpCodeInput()

        self.state = FlowState.ENTERING
        self.history: List[FlowState] = [FlowState.ENTERING]
        self.field_errors: Dict[str, str] = {}
        self.last_error: Optional[RegistrationError] = None
        self.outcome: Optional[SubmissionOutcome] = None
        self.challenge: Optional[OtpChallenge] = None
        self.staged_id: Optional[str] = None
        self.email: Optional[str] = None
        self.rejected_email: Optional[str] = None

        self._loaded: Optional[LoadedDraft] = None
        self._in_flight: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        settings: PortalSettings,
        scheduler: Scheduler,
        storage: Optional[SessionStorage] = None,
        session: Optional[requests.Session] = None,
        **kwargs: Any,
    ) -> "StagedRegistrationController":
        store = DraftStore(
            storage if storage is not None else MemorySessionStorage(),
            FieldCipher.from_b64(settings.encryption_key),
            namespace=settings.draft_namespace,
        )
        session = session or requests.Session()
        return cls(
            store,
            OtpGatewayClient(settings, session),
            RegistrationSubmitter(settings, session),
            scheduler,
            cooldown=settings.resend_cooldown,
            **kwargs,
        )

    # -- gating ------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._in_flight is not None

    @property
    def can_submit_form(self) -> bool:
        return not self.is_busy and self.state in (FlowState.ENTERING, FlowState.STAGED)

    @property
    def can_verify(self) -> bool:
        return not self.is_busy and self.state is FlowState.AWAITING_CODE

    @property
    def can_resend(self) -> bool:
        return (
            not self.is_busy
            and self.state is FlowState.AWAITING_CODE
            and self.timer.can_resend
        )

    @property
    def countdown(self) -> int:
        return self.timer.remaining

    @property
    def message(self) -> Optional[str]:
        return self.last_error.message if self.last_error else None

    @contextmanager
    def _call(self, action: str) -> Iterator[None]:
        if self._in_flight is not None:
            raise ActionInProgress()
        self._in_flight = action
        try:
            yield
        finally:
            self._in_flight = None

    # -- transitions -------------------------------------------------------

    def _transition(self, new: FlowState) -> None:
        old = self.state
        if old is new:
            return
        if old is FlowState.AWAITING_CODE:
            self.timer.cancel()
        self.state = new
        self.history.append(new)
        logger.info("registration %s -> %s", old.value, new.value)
        if new in TERMINAL:
            self._discard_draft()
        if self.on_change is not None:
            self.on_change(old, new)

    def _discard_draft(self) -> None:
        self._loaded = None
        if self.staged_id is None:
            return
        staged_id, self.staged_id = self.staged_id, None
        try:
            self.store.clear(staged_id)
        except DraftStoreError:
            logger.exception("could not clear staged draft %s", staged_id)

    def _tick(self, remaining: int) -> None:
        if self.on_tick is not None:
            self.on_tick(remaining)

    def _run(self, graph: Any, payload: Dict[str, Any]) -> None:
        for chunk in graph.stream(payload, stream_mode="updates"):
            for node, update in chunk.items():
                if isinstance(update, BaseModel):
                    update = {k: getattr(update, k) for k in update.model_fields_set}
                if self.state is FlowState.ABANDONED:
                    logger.info("discarding %s result after abandonment", node)
                    if update and update.get("staged_id"):
                        self.store.clear(update["staged_id"])
                    return
                self._apply(update or {})

    def _apply(self, update: Dict[str, Any]) -> None:
        if "validation_errors" in update:
            self.field_errors = dict(update["validation_errors"])
            if self.field_errors and update.get("error") is None and self.last_error is None:
                field = sorted(self.field_errors)[0]
                self.last_error = ValidationError(field, self.field_errors[field])
        if "rejected_email" in update:
            self.rejected_email = update["rejected_email"]
        if "staged_id" in update:
            self.staged_id = update["staged_id"]
        if update.get("draft") is not None:
            self.email = str(update["draft"].email)
        if update.get("error") is not None:
            self.last_error = update["error"]
        if update.get("outcome") is not None:
            self.outcome = update["outcome"]

        new = update.get("flow_state")
        if new is FlowState.AWAITING_CODE:
            self._enter_code_step()
        elif new is not None:
            self._transition(new)

    def _enter_code_step(self) -> None:
        self._transition(FlowState.AWAITING_CODE)
        try:
            self._loaded = self.store.load(self.staged_id)
        except DraftStoreError as e:
            logger.warning("cannot enter code step for %s: %s", self.email, e.message)
            self.last_error = e
            self._discard_draft()
            self._transition(FlowState.ENTERING)
            return
        self.challenge = OtpChallenge(email=self.email, cooldown_seconds=self.timer.cooldown)
        self.code.clear()
        self.timer.start()

    # -- operations --------------------------------------------------------

    def submit_form(self, form: RegistrationForm) -> FlowState:
        """Validate, stage and request a code. Allowed any number of times before the code step."""
        if self._in_flight is not None:
            raise ActionInProgress()
        if self.state not in (FlowState.ENTERING, FlowState.STAGED):
            raise InvalidTransition()

        self.last_error = None
        self.outcome = None
        self.challenge = None
        with self._call("submit_form"):
            self._run(
                self._entry,
                {
                    "form": form,
                    "staged_id": self.staged_id,
                    "rejected_email": self.rejected_email,
                    "flow_state": self.state,
                },
            )
        return self.state

    def resume(self, staged_id: str, email: str) -> FlowState:
        """Enter the code step for a draft staged before a page reload."""
        if self._in_flight is not None:
            raise ActionInProgress()
        if self.state is not FlowState.ENTERING:
            raise InvalidTransition()
        self.outcome = None
        self.challenge = None
        self.last_error = None
        self.staged_id = staged_id
        self.email = email
        self._enter_code_step()
        return self.state

    def verify(self, code: Optional[str] = None) -> Optional[SubmissionOutcome]:
        """Create the account, then verify the code. Returns the outcome once DONE."""
        if self._in_flight is not None:
            raise ActionInProgress()
        if self.state is not FlowState.AWAITING_CODE:
            raise InvalidTransition()

        try:
            code = self.validator.validate_code(self.code.value if code is None else code)
        except ValidationError as e:
            self.field_errors = {e.field: e.reason}
            self.last_error = e
            return None

        self.last_error = None
        self.field_errors = {}
        with self._call("verify"):
            loaded = self._loaded
            self._transition(FlowState.SUBMITTING)
            self._run(
                self._verification,
                {
                    "loaded": loaded,
                    "code": code,
                    "staged_id": self.staged_id,
                    "flow_state": FlowState.SUBMITTING,
                },
            )

        if self.outcome is not None:
            logger.info("registration for %s finished: %s", self.email, self.outcome.kind.value)
            if self.outcome.kind is OutcomeKind.FAILED and self.state is FlowState.DONE:
                self._transition(FlowState.ENTERING)
        return self.outcome

    def resend(self) -> bool:
        """Request a new code once the cooldown has run out."""
        if self._in_flight is not None:
            raise ActionInProgress()
        if self.state is not FlowState.AWAITING_CODE:
            raise InvalidTransition()
        if not self.timer.can_resend:
            raise InvalidTransition(
                f"Please wait {self.timer.remaining}s before requesting a new code."
            )

        with self._call("resend"):
            try:
                self.gateway.request_code(self.email)
            except RegistrationError as e:
                if self.state is FlowState.AWAITING_CODE:
                    self.last_error = e
                return False

        if self.state is not FlowState.AWAITING_CODE:
            logger.info("discarding resend result after abandonment")
            return False

        self.last_error = None
        self.challenge = OtpChallenge(email=self.email, cooldown_seconds=self.timer.cooldown)
        self.code.clear()
        self.timer.reset()
        return True

    def abandon(self) -> None:
        """User went back to the entry screen. Drops the staged draft."""
        if self.state not in ABANDONABLE:
            raise InvalidTransition()
        self.timer.cancel()
        self.code.clear()
        self._transition(FlowState.ABANDONED)

    def teardown(self) -> None:
        self.timer.cancel()
