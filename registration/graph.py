from typing import Any, Dict, Literal

import pydantic
from langgraph.graph import StateGraph, START, END
from pydantic.alias_generators import to_snake

from persistence.draft_store import DraftStore
from registration.errors import DuplicateEmail, EmailAlreadyRegistered, RegistrationError, ValidationRejected
from registration.state import FlowState, RegistrationState, SubmissionOutcome
from registration.validator import RegistrationValidator
from services.otp_gateway import OtpGatewayClient
from services.submitter import RegistrationSubmitter


class RegistrationGraphFactory:
    """
    Builds the two pipelines behind the registration screens.

    entry:        validate -> missing -> stage -> request_code
    verification: submit -> verify | failed

    Nodes never raise RegistrationError. They record it in `error` and leave
    `flow_state` where the failure should park the flow.
    """

    def __init__(
        self,
        validator: RegistrationValidator,
        store: DraftStore,
        gateway: OtpGatewayClient,
        submitter: RegistrationSubmitter,
    ):
        self.validator = validator
        self.store = store
        self.gateway = gateway
        self.submitter = submitter

    def stage_draft(self, state: RegistrationState) -> Dict[str, Any]:
        form = state.form
        try:
            draft = form.to_draft()
        except pydantic.ValidationError as e:
            errors = {to_snake(str(err["loc"][0])): err["msg"] for err in e.errors() if err["loc"]}
            return {"validation_errors": errors}

        try:
            if state.staged_id:
                self.store.clear(state.staged_id)
            staged_id = self.store.stage(draft, form.profile_picture)
        except RegistrationError as e:
            return {"error": e, "staged_id": None, "flow_state": FlowState.ENTERING}

        return {"draft": draft, "staged_id": staged_id, "flow_state": FlowState.STAGED}

    @staticmethod
    def after_stage(state: RegistrationState) -> Literal["end", "request_code"]:
        if state.error is None and not state.validation_errors and state.draft is not None:
            return "request_code"
        return "end"

    def request_code(self, state: RegistrationState) -> Dict[str, Any]:
        email = str(state.draft.email)
        try:
            self.gateway.request_code(email)
        except EmailAlreadyRegistered as e:
            return {
                "error": e,
                "rejected_email": email,
                "validation_errors": {**state.validation_errors, "email": e.message},
            }
        except RegistrationError as e:
            return {"error": e}
        return {"flow_state": FlowState.AWAITING_CODE}

    def submit(self, state: RegistrationState) -> Dict[str, Any]:
        loaded = state.loaded
        try:
            account = self.submitter.submit(loaded.draft, loaded.attachment)
        except RegistrationError as e:
            return {"error": e, "outcome": SubmissionOutcome.failed(e.message)}
        return {"account": account, "flow_state": FlowState.VERIFYING}

    @staticmethod
    def after_submit(state: RegistrationState) -> Literal["verify", "failed"]:
        return "verify" if state.account is not None else "failed"

    def verify(self, state: RegistrationState) -> Dict[str, Any]:
        email = str(state.loaded.draft.email)
        try:
            self.gateway.verify_code(email, state.code)
        except RegistrationError as e:
            # the account already exists; only the verification step failed
            return {
                "error": e,
                "outcome": SubmissionOutcome.verification_failed(state.account, e.message),
                "flow_state": FlowState.DONE,
            }
        return {
            "outcome": SubmissionOutcome.account_created(state.account),
            "flow_state": FlowState.DONE,
        }

    @staticmethod
    def submission_failed(state: RegistrationState) -> Dict[str, Any]:
        updates: Dict[str, Any] = {"flow_state": FlowState.DONE}
        err = state.error
        if isinstance(err, DuplicateEmail):
            updates["validation_errors"] = {"email": err.message}
            updates["rejected_email"] = str(state.loaded.draft.email)
        elif isinstance(err, ValidationRejected):
            updates["validation_errors"] = {to_snake(err.field): err.message}
        return updates

    def build_entry(self) -> StateGraph:
        g = StateGraph(RegistrationState)

        g.add_node("validate", self.validator.validate_present_fields)
        g.add_node("missing", self.validator.compute_missing_fields)
        g.add_node("stage", self.stage_draft)
        g.add_node("request_code", self.request_code)

        g.add_edge(START, "validate")
        g.add_edge("validate", "missing")

        g.add_conditional_edges(
            "missing",
            self.validator.should_stage,
            {"end": END, "stage": "stage"},
        )
        g.add_conditional_edges(
            "stage",
            self.after_stage,
            {"end": END, "request_code": "request_code"},
        )
        g.add_edge("request_code", END)

        return g

    def build_verification(self) -> StateGraph:
        g = StateGraph(RegistrationState)

        g.add_node("submit", self.submit)
        g.add_node("verify", self.verify)
        g.add_node("failed", self.submission_failed)

        g.add_edge(START, "submit")
        g.add_conditional_edges(
            "submit",
            self.after_submit,
            {"verify": "verify", "failed": "failed"},
        )
        g.add_edge("verify", END)
        g.add_edge("failed", END)

        return g

    def compile_entry(self):
        return self.build_entry().compile()

    def compile_verification(self):
        return self.build_verification().compile()
