# app/services/voting_service.py
"""Voting orchestrator.

Sequences eligibility -> payment initialize -> payment verify -> ledger
commit. Webhook pushes, client polls and the expiry sweep all enter through
confirm_payment(), so every route into PaymentPending behaves the same.

States:
    requested -> eligibility_checked -> payment_initialized -> payment_pending
    -> payment_confirmed -> vote_committed
Terminal failures: ineligible, payment_failed, payment_expired, commit_rejected
"""
import enum
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.core.capabilities import Capability, has_capability
from app.core.exceptions import (
    DuplicateVote,
    GatewayError,
    GatewayUnavailable,
    InvalidSignature,
    InvalidTransition,
    MetadataMismatch,
    PaymentNotConfirmed,
    ReferenceNotFound,
)
from app.core.logger import logger
from app.models.category import Category
from app.models.nominee import Nominee
from app.models.payment import PaymentStatus, PaymentTransaction, generate_reference
from app.models.reconciliation import ReconciliationKind
from app.models.user import User
from app.models.vote import VoteRecord
from app.services import eligibility_service, ledger_service, rate_limit_service
from app.services.eligibility_service import IneligibleReason, REASON_MESSAGES
from app.services.paystack_service import PaystackClient, VerifiedPayment


class VoteFlowState(str, enum.Enum):
    REQUESTED = "requested"
    ELIGIBILITY_CHECKED = "eligibility_checked"
    PAYMENT_INITIALIZED = "payment_initialized"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    VOTE_COMMITTED = "vote_committed"
    INELIGIBLE = "ineligible"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_EXPIRED = "payment_expired"
    COMMIT_REJECTED = "commit_rejected"


# What the voter sees. Integrity details never leave the server.
FLOW_MESSAGES = {
    VoteFlowState.PAYMENT_INITIALIZED: "Complete your payment to cast your vote",
    VoteFlowState.PAYMENT_PENDING: "We are still confirming your payment. Please check back shortly.",
    VoteFlowState.VOTE_COMMITTED: "Your vote has been recorded",
    VoteFlowState.PAYMENT_FAILED: "Your payment was not successful. You can try again.",
    VoteFlowState.PAYMENT_EXPIRED: "Your payment session expired. You can start a new vote.",
    VoteFlowState.COMMIT_REJECTED: (
        "We could not record your vote. Our team has been notified and will follow up."
    ),
}


@dataclass
class VoteFlowResult:
    state: VoteFlowState
    reference: Optional[str] = None
    redirect_url: Optional[str] = None
    vote: Optional[VoteRecord] = None
    reason: Optional[IneligibleReason] = None
    message: str = ""

    def __post_init__(self):
        if not self.message:
            if self.reason is not None:
                self.message = REASON_MESSAGES[self.reason]
            else:
                self.message = FLOW_MESSAGES.get(self.state, "")

    @property
    def is_terminal(self) -> bool:
        return self.state not in (
            VoteFlowState.PAYMENT_INITIALIZED,
            VoteFlowState.PAYMENT_PENDING,
        )


_TERMINAL_FLOW = {
    PaymentStatus.FAILED: VoteFlowState.PAYMENT_FAILED,
    PaymentStatus.EXPIRED: VoteFlowState.PAYMENT_EXPIRED,
}

_SWEEP_BUCKET = {
    VoteFlowState.PAYMENT_EXPIRED: "expired",
    VoteFlowState.VOTE_COMMITTED: "committed",
    VoteFlowState.PAYMENT_FAILED: "failed",
    VoteFlowState.PAYMENT_PENDING: "pending",
    VoteFlowState.COMMIT_REJECTED: "rejected",
}


class VotingService:
    """Paid-vote orchestrator. Stateless apart from the gateway client."""

    def __init__(self, gateway: PaystackClient = None):
        self.gateway = gateway or PaystackClient()

    # ===== Requested -> PaymentInitialized =====

    async def request_vote(
        self,
        db: AsyncSession,
        user: User,
        category_id: str,
        nominee_id: str,
        payer_email: str = None,
        now: datetime | None = None
    ) -> VoteFlowResult:
        """Check eligibility and start a payment for one vote"""
        now = now or datetime.now(timezone.utc)

        if not has_capability(user, Capability.VOTE):
            return self._ineligible(IneligibleReason.ACCOUNT_INACTIVE)

        # Plain values: a rollback inside the ledger expires ORM state
        user_id = user.id
        payer_email = payer_email or user.email
        log = logger.bind(user_id=user_id, category_id=category_id, nominee_id=nominee_id)

        eligibility = await eligibility_service.check_eligibility(db, user_id, category_id, now)
        if not eligibility.eligible:
            log.info(f"Vote request rejected: {eligibility.reason.value}")
            return self._ineligible(eligibility.reason)

        nominee = await db.get(Nominee, nominee_id)
        if nominee is None or nominee.category_id != category_id or not nominee.is_votable:
            log.info("Vote request rejected: nominee not votable")
            return self._ineligible(IneligibleReason.NOMINEE_NOT_VOTABLE)

        # Reuse an open checkout for the same choice instead of charging twice
        live = await ledger_service.find_live_transactions(db, user_id, category_id, now)
        for transaction in live:
            if transaction.nominee_id == nominee_id and transaction.authorization_url:
                log.info(f"Reusing live payment {transaction.reference}")
                return VoteFlowResult(
                    state=VoteFlowState.PAYMENT_INITIALIZED,
                    reference=transaction.reference,
                    redirect_url=transaction.authorization_url
                )
        live_references = [t.reference for t in live]

        await rate_limit_service.check_payment_limit(db, user_id)

        # Changed their mind: an old checkout may already be paid, so ask the
        # gateway before retiring it
        superseded = []
        for reference in live_references:
            transaction = await ledger_service.get_transaction(db, reference)
            settled = await self._settle_checkout(db, transaction)
            if settled is None:
                superseded.append(reference)
            elif settled.state == VoteFlowState.VOTE_COMMITTED:
                log.info(f"Vote request rejected: earlier payment {reference} already counted")
                return self._ineligible(IneligibleReason.ALREADY_VOTED)

        category = await db.get(Category, category_id)
        amount = category.vote_price
        reference = generate_reference()
        metadata = {
            "purpose": "vote_payment",
            "user_id": user_id,
            "category_id": category_id,
            "nominee_id": nominee_id,
        }
        # GatewayUnavailable / GatewayError / InvalidAmount propagate to the caller
        initialized = await self.gateway.initialize(
            amount=amount,
            currency=settings.currency,
            payer_email=payer_email,
            metadata=metadata,
            reference=reference
        )

        transaction = await ledger_service.record_initialized(
            db,
            reference=initialized.reference,
            user_id=user_id,
            category_id=category_id,
            nominee_id=nominee_id,
            amount=amount,
            currency=settings.currency,
            expires_at=now + timedelta(minutes=settings.payment_expiry_minutes),
            authorization_url=initialized.redirect_url,
            access_code=initialized.access_code
        )
        result = VoteFlowResult(
            state=VoteFlowState.PAYMENT_INITIALIZED,
            reference=transaction.reference,
            redirect_url=transaction.authorization_url
        )
        log.info(f"Payment initialized: {result.reference}")

        # Only now that the new checkout exists are the unpaid old ones retired
        for reference in superseded:
            old = await ledger_service.get_transaction(db, reference)
            await self._close(db, old, PaymentStatus.EXPIRED, "initialize", "superseded by a new vote request")

        return result

    async def _settle_checkout(
        self,
        db: AsyncSession,
        transaction: PaymentTransaction
    ) -> Optional[VoteFlowResult]:
        """
        Resolve a live checkout the voter is leaving for another nominee.

        Returns None while the gateway reports it unpaid. GatewayUnavailable
        and GatewayError propagate and the checkout stays live.
        """
        try:
            verified = await self._verify_with_retry(transaction.reference)
        except ReferenceNotFound:
            return None

        await db.refresh(transaction)
        if transaction.is_terminal:
            if transaction.status == PaymentStatus.EXPIRED and verified.status == PaymentStatus.SUCCESS:
                return await self._late_payment(db, transaction, verified, "initialize")
            return await self._resolved_state(db, transaction)

        if verified.status == PaymentStatus.SUCCESS:
            return await self._on_gateway_success(db, transaction, verified, "initialize")
        if verified.status == PaymentStatus.FAILED:
            return await self._close_failed(db, transaction, verified, "initialize")
        return None

    # ===== PaymentPending -> terminal =====

    async def confirm_payment(
        self,
        db: AsyncSession,
        reference: str,
        source: str = "poll",
        now: datetime | None = None
    ) -> VoteFlowResult:
        """
        Resolve a transaction against the gateway and commit its vote.

        Safe to call any number of times from any route (webhook, poll,
        sweep); a resolved reference returns the same terminal state.
        Raises ReferenceNotFound for a reference we never issued.
        """
        now = now or datetime.now(timezone.utc)

        transaction = await ledger_service.get_transaction(db, reference)
        if transaction is None:
            raise ReferenceNotFound()

        if transaction.status == PaymentStatus.EXPIRED and source == "webhook":
            # The gateway says something happened after we gave up
            return await self._check_late_payment(db, transaction)
        if transaction.is_terminal:
            return await self._resolved_state(db, transaction)

        try:
            verified = await self._verify_with_retry(reference)
        except GatewayUnavailable:
            logger.warning(f"Verification of {reference} gave up after {settings.verify_max_attempts} attempts")
            return VoteFlowResult(state=VoteFlowState.PAYMENT_PENDING, reference=reference)
        except GatewayError as e:
            logger.error(f"Gateway rejected verification of {reference}: {e.message}")
            return VoteFlowResult(state=VoteFlowState.PAYMENT_PENDING, reference=reference)
        except ReferenceNotFound:
            # Checkout never reached the gateway
            status = PaymentStatus.EXPIRED if transaction.is_expired_at(now) else PaymentStatus.FAILED
            return await self._close(db, transaction, status, source, "reference unknown to gateway")

        # A concurrent confirmer may have resolved it while we waited on the gateway
        await db.refresh(transaction)
        if transaction.is_terminal:
            if transaction.status == PaymentStatus.EXPIRED and verified.status == PaymentStatus.SUCCESS:
                return await self._late_payment(db, transaction, verified, source)
            return await self._resolved_state(db, transaction)

        if verified.status == PaymentStatus.SUCCESS:
            return await self._on_gateway_success(db, transaction, verified, source)

        if verified.status == PaymentStatus.FAILED:
            return await self._close_failed(db, transaction, verified, source)

        # Still pending at the gateway
        if transaction.is_expired_at(now):
            return await self._close(db, transaction, PaymentStatus.EXPIRED, source, "expiry window elapsed")
        return await self._close(db, transaction, PaymentStatus.PENDING, source, verified.gateway_status)

    async def _verify_with_retry(self, reference: str) -> VerifiedPayment:
        """gateway.verify with exponential backoff on transient faults"""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.verify_max_attempts),
            wait=wait_exponential(
                multiplier=settings.verify_backoff_min_seconds,
                min=settings.verify_backoff_min_seconds,
                max=settings.verify_backoff_max_seconds
            ),
            retry=retry_if_exception_type(GatewayUnavailable),
            reraise=True
        ):
            with attempt:
                return await self.gateway.verify(reference)

    async def _on_gateway_success(
        self,
        db: AsyncSession,
        transaction: PaymentTransaction,
        verified: VerifiedPayment,
        source: str
    ) -> VoteFlowResult:
        try:
            await ledger_service.transition(
                db, transaction, PaymentStatus.SUCCESS, source, "verified with gateway",
                amount_paid=verified.amount_paid,
                channel=verified.channel,
                paid_at=verified.paid_at,
                gateway_response=verified.raw
            )
        except InvalidTransition:
            await db.refresh(transaction)
            if transaction.status == PaymentStatus.EXPIRED:
                return await self._late_payment(db, transaction, verified, source)
            return await self._resolved_state(db, transaction)

        problem = self._payment_problem(transaction, verified)
        if problem is not None:
            kind, detail = problem
            await self._escalate(db, transaction, kind, detail)
            return VoteFlowResult(state=VoteFlowState.COMMIT_REJECTED, reference=transaction.reference)

        return await self._commit(db, transaction)

    def _payment_problem(self, transaction: PaymentTransaction, verified: VerifiedPayment):
        """Amount, currency and intent checks on what the gateway says was paid"""
        if verified.amount_paid < transaction.amount or (
            verified.currency and verified.currency != transaction.currency
        ):
            return ReconciliationKind.AMOUNT_MISMATCH, {
                "expected": f"{transaction.amount} {transaction.currency}",
                "paid": f"{verified.amount_paid} {verified.currency}",
            }

        recorded = {
            "user_id": transaction.user_id,
            "category_id": transaction.category_id,
            "nominee_id": transaction.nominee_id,
        }
        reported = {key: verified.metadata[key] for key in recorded if key in verified.metadata}
        if any(reported[key] != recorded[key] for key in reported):
            return ReconciliationKind.COMMIT_REJECTED, {
                "error": "gateway metadata mismatch",
                "recorded": recorded,
                "gateway": reported,
            }
        return None

    async def _check_late_payment(self, db: AsyncSession, transaction: PaymentTransaction) -> VoteFlowResult:
        reference = transaction.reference
        try:
            verified = await self._verify_with_retry(reference)
        except (GatewayUnavailable, GatewayError, ReferenceNotFound):
            return await self._resolved_state(db, transaction)
        if verified.status != PaymentStatus.SUCCESS:
            return await self._resolved_state(db, transaction)
        return await self._late_payment(db, transaction, verified, "webhook")

    async def _late_payment(
        self,
        db: AsyncSession,
        transaction: PaymentTransaction,
        verified: VerifiedPayment,
        source: str
    ) -> VoteFlowResult:
        await self._escalate(
            db, transaction, ReconciliationKind.LATE_PAYMENT,
            {"amount_paid": f"{verified.amount_paid} {verified.currency}", "source": source}
        )
        return VoteFlowResult(state=VoteFlowState.COMMIT_REJECTED, reference=transaction.reference)

    # ===== PaymentConfirmed -> VoteCommitted =====

    async def _commit(self, db: AsyncSession, transaction: PaymentTransaction) -> VoteFlowResult:
        # Plain values: the session expires ORM state on rollback
        reference = transaction.reference
        transaction_id = transaction.id
        user_id = transaction.user_id
        category_id = transaction.category_id
        nominee_id = transaction.nominee_id

        existing = await ledger_service.get_vote_for_transaction(db, transaction_id)
        if existing is not None:
            return VoteFlowResult(state=VoteFlowState.VOTE_COMMITTED, reference=reference, vote=existing)
        if await ledger_service.has_blocking_case(db, transaction_id):
            return VoteFlowResult(state=VoteFlowState.COMMIT_REJECTED, reference=reference)

        try:
            vote = await ledger_service.commit_vote(db, user_id, category_id, nominee_id, reference)
        except DuplicateVote as e:
            existing = e.existing
            if existing is not None and existing.transaction_id != transaction_id:
                # Paid again for a category the user already voted in
                await ledger_service.open_reconciliation_case(
                    db, transaction_id, user_id, ReconciliationKind.DUPLICATE_PAYMENT,
                    {"reference": reference, "existing_vote_id": existing.id}
                )
            return VoteFlowResult(state=VoteFlowState.VOTE_COMMITTED, reference=reference, vote=existing)
        except (MetadataMismatch, PaymentNotConfirmed) as e:
            detail = {"error": type(e).__name__, "reference": reference}
            if isinstance(e, MetadataMismatch):
                detail.update(e.detail)
            await ledger_service.open_reconciliation_case(
                db, transaction_id, user_id, ReconciliationKind.COMMIT_REJECTED, detail
            )
            return VoteFlowResult(state=VoteFlowState.COMMIT_REJECTED, reference=reference)

        return VoteFlowResult(state=VoteFlowState.VOTE_COMMITTED, reference=reference, vote=vote)

    # ===== Helpers =====

    async def _close(
        self,
        db: AsyncSession,
        transaction: PaymentTransaction,
        status: PaymentStatus,
        source: str,
        detail: str = None,
        **fields
    ) -> VoteFlowResult:
        """Apply a transition, then report whatever state actually won"""
        try:
            await ledger_service.transition(db, transaction, status, source, detail, **fields)
        except InvalidTransition:
            await db.refresh(transaction)
        return await self._resolved_state(db, transaction)

    async def _close_failed(
        self,
        db: AsyncSession,
        transaction: PaymentTransaction,
        verified: VerifiedPayment,
        source: str
    ) -> VoteFlowResult:
        return await self._close(
            db, transaction, PaymentStatus.FAILED, source, verified.gateway_status,
            gateway_response=verified.raw,
            failure_reason=verified.raw.get("gateway_response") or verified.gateway_status
        )

    async def _resolved_state(self, db: AsyncSession, transaction: PaymentTransaction) -> VoteFlowResult:
        """Flow state implied by the transaction's stored status"""
        if transaction.status == PaymentStatus.SUCCESS:
            return await self._commit(db, transaction)
        if transaction.status in _TERMINAL_FLOW:
            state = _TERMINAL_FLOW[transaction.status]
            if state == VoteFlowState.PAYMENT_EXPIRED and await ledger_service.has_blocking_case(db, transaction.id):
                state = VoteFlowState.COMMIT_REJECTED
            return VoteFlowResult(state=state, reference=transaction.reference)
        return VoteFlowResult(state=VoteFlowState.PAYMENT_PENDING, reference=transaction.reference)

    async def _escalate(
        self,
        db: AsyncSession,
        transaction: PaymentTransaction,
        kind: ReconciliationKind,
        detail: dict
    ) -> None:
        await ledger_service.open_reconciliation_case(
            db, transaction.id, transaction.user_id, kind,
            {"reference": transaction.reference, **detail}
        )

    @staticmethod
    def _ineligible(reason: IneligibleReason) -> VoteFlowResult:
        return VoteFlowResult(state=VoteFlowState.INELIGIBLE, reason=reason)

    # ===== Webhook =====

    async def handle_webhook(
        self,
        db: AsyncSession,
        raw_body: bytes,
        signature: str | None
    ) -> Optional[VoteFlowResult]:
        """Authenticate a gateway push and route it into confirm_payment"""
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignature()

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise InvalidSignature("Malformed webhook payload") from e
        if not isinstance(payload, dict):
            raise InvalidSignature("Malformed webhook payload")

        event = payload.get("event")
        data = payload.get("data")
        reference = data.get("reference") if isinstance(data, dict) else None
        logger.info(f"Webhook received: {event} for {reference}")

        if event not in ("charge.success", "charge.failed") or not reference:
            return None

        # The payload is only a hint; confirm_payment asks the gateway itself
        try:
            return await self.confirm_payment(db, reference, source="webhook")
        except ReferenceNotFound:
            logger.warning(f"Webhook for unknown reference {reference}")
            return None

    # ===== Expiry sweep =====

    async def expire_stale_transactions(self, db: AsyncSession, now: datetime | None = None) -> dict:
        """
        Resolve transactions past their expiry window (asking the gateway
        first, so a payment that did go through is still committed), then
        re-drive commits for successful payments that have no vote yet.
        """
        now = now or datetime.now(timezone.utc)
        summary = {"checked": 0, "expired": 0, "committed": 0, "failed": 0, "pending": 0, "rejected": 0}

        stale = [t.reference for t in await ledger_service.list_stale_transactions(db, now)]
        for reference in stale:
            result = await self.confirm_payment(db, reference, source="sweep", now=now)
            summary["checked"] += 1
            summary[_SWEEP_BUCKET.get(result.state, "pending")] += 1

        uncommitted = [t.reference for t in await ledger_service.list_uncommitted_successes(db)]
        for reference in uncommitted:
            transaction = await ledger_service.get_transaction(db, reference)
            result = await self._commit(db, transaction)
            summary["checked"] += 1
            summary[_SWEEP_BUCKET.get(result.state, "pending")] += 1

        if summary["checked"]:
            logger.info(f"Payment sweep: {summary}")
        return summary
