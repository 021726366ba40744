"""
Application service for payment-gateway webhook ingestion.

Each delivery runs in three phases, each in its own unit of work:

1. record the event in the idempotency ledger and commit, so concurrent
   deliveries of the same event serialize on the unique index;
2. lock the ledger row, apply the side effects (order creation) and mark the
   event processed in a single commit, bounded by a processing timeout;
3. on failure, record the attempt on the ledger in a fresh transaction and
   surface a retryable error so the gateway delivers again.
"""
from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from application.dtos.payments import PaymentConfirmation, WebhookAck, WebhookEvent
from application.ports.alerting import Alerter
from application.ports.notifications import Notifier
from application.ports.payment_gateway import PaymentGateway
from application.utils.events import log_domain_events
from domain.cart.entity import CartStatus
from domain.common.exceptions import (
    BusinessException,
    CartNotFoundException,
    CheckoutValidationException,
    InsufficientStockException,
    OrderIntegrityError,
    RetryableProcessingError,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.service import InventoryReservationManager
from domain.order.entity import Order
from domain.order.service import CapturedPayment, OrderDomainService
from domain.webhook.entity import LedgerDecision, LedgerOutcome
from domain.webhook.service import IdempotencyLedger
from shared.codes.payment_codes import PROVIDER_EVENT_TO_INTENT, PaymentCode
from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

# Failures after capture that retrying cannot fix; operators are paged at once
_INTEGRITY_ERRORS = (CheckoutValidationException, InsufficientStockException, CartNotFoundException)

ReplayScheduler = Callable[[str, str], None]


class WebhookIngestionService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        alerter: Alerter,
        notifier: Optional[Notifier] = None,
        replay_scheduler: Optional[ReplayScheduler] = None,
        source: Optional[str] = None,
        max_retries: Optional[int] = None,
        processing_timeout: Optional[float] = None,
        low_stock_threshold: Optional[int] = None,
        admin_email: Optional[str] = None,
    ) -> None:
        cfg = settings.webhook
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.alerter = alerter
        self.notifier = notifier
        self.replay_scheduler = replay_scheduler
        self.source = source or cfg.source
        self.max_retries = max_retries if max_retries is not None else cfg.max_retries
        self.processing_timeout = processing_timeout if processing_timeout is not None else cfg.processing_timeout_seconds
        self.low_stock_threshold = (
            low_stock_threshold
            if low_stock_threshold is not None
            else settings.inventory.default_low_stock_threshold
        )
        self.admin_email = admin_email if admin_email is not None else settings.notifications.admin_email

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------
    async def ingest(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """Handle one delivery from the gateway."""
        try:
            event = self.gateway.verify_signature(raw_body, signature)
        except BusinessException as exc:
            if exc.code == PaymentCode.SIGNATURE_ERROR:
                logger.warning("webhook_signature_invalid", provider=self.gateway.provider, error=exc.message)
                await self.alerter.notify(
                    "Webhook signature verification failed",
                    provider=self.gateway.provider,
                    error=exc.message,
                )
            raise

        confirmation = self.gateway.extract_confirmation(event)
        payload_hash = hashlib.sha256(raw_body).hexdigest()

        async with self._uow_factory() as uow:
            ledger = IdempotencyLedger(uow.inbound_events)
            decision = await ledger.record_or_skip(
                self.source,
                event.id,
                event.type,
                payload_hash,
                payload=event.payload,
                max_retries=self.max_retries,
            )
            await uow.commit()

        early = await self._handle_decision(decision, event)
        if early is not None:
            return early
        return await self._process(self.source, event, confirmation, schedule_replay=True)

    async def replay(self, source: str, event_id: str) -> WebhookAck:
        """Process a stored, unprocessed event again from its saved payload."""
        async with self._uow_factory(readonly=True) as uow:
            record = await uow.inbound_events.get(source, event_id)

        if record is None or record.processed:
            return WebhookAck(duplicate=True)
        if record.retries_exhausted:
            return WebhookAck(giving_up=True)
        if not record.payload:
            logger.warning("webhook_replay_without_payload", source=source, event_id=event_id)
            return WebhookAck(ignored=True)

        event = WebhookEvent(
            id=record.event_id,
            type=record.event_type,
            provider=self.gateway.provider,
            data=record.payload.get("data") or {},
            payload=record.payload,
            created=record.payload.get("created"),
        )
        confirmation = self.gateway.extract_confirmation(event)
        logger.info("webhook_replay_started", source=source, event_id=event_id, retry_count=record.retry_count)
        return await self._process(source, event, confirmation, schedule_replay=False)

    async def replay_pending(self, *, older_than: Optional[datetime] = None, limit: Optional[int] = None) -> dict:
        """Replay events left unprocessed (worker crash, timeout) past the grace period."""
        cfg = settings.webhook
        older_than = older_than or datetime.now(timezone.utc) - timedelta(seconds=cfg.replay_after_seconds)
        async with self._uow_factory(readonly=True) as uow:
            pending = await uow.inbound_events.list_replayable(
                older_than=older_than,
                limit=limit or cfg.replay_batch_size,
            )

        summary = {"processed": 0, "failed": 0, "skipped": 0}
        for record in pending:
            try:
                ack = await self.replay(record.source, record.event_id)
            except BusinessException as exc:
                summary["failed"] += 1
                logger.warning(
                    "webhook_replay_failed",
                    source=record.source,
                    event_id=record.event_id,
                    error=exc.message,
                )
                continue
            summary["processed" if ack.processed else "skipped"] += 1
        if pending:
            logger.info("webhook_replay_batch_finished", **summary)
        return summary

    # ------------------------------------------------------------------
    # phases
    # ------------------------------------------------------------------
    async def _handle_decision(self, decision: LedgerDecision, event: WebhookEvent) -> Optional[WebhookAck]:
        if decision.payload_drift:
            logger.warning(
                "webhook_payload_drift",
                source=self.source,
                event_id=event.id,
                event_type=event.type,
            )

        if decision.outcome == LedgerOutcome.DUPLICATE:
            logger.info("webhook_duplicate_ignored", source=self.source, event_id=event.id, event_type=event.type)
            return WebhookAck(duplicate=True)

        if decision.outcome == LedgerOutcome.EXHAUSTED:
            record = decision.record
            if decision.newly_escalated:
                logger.error(
                    "webhook_retries_exhausted",
                    source=self.source,
                    event_id=event.id,
                    event_type=event.type,
                    retry_count=record.retry_count,
                    last_error=record.last_error,
                )
                await self.alerter.notify(
                    "Webhook event exhausted its retries",
                    source=self.source,
                    event_id=event.id,
                    event_type=event.type,
                    retry_count=record.retry_count,
                    last_error=record.last_error,
                )
            return WebhookAck(giving_up=True)

        if decision.outcome == LedgerOutcome.RETRY:
            logger.info(
                "webhook_retry",
                source=self.source,
                event_id=event.id,
                retry_count=decision.record.retry_count,
            )
        return None

    async def _process(
        self,
        source: str,
        event: WebhookEvent,
        confirmation: Optional[PaymentConfirmation],
        *,
        schedule_replay: bool,
    ) -> WebhookAck:
        try:
            ack, order, created, events = await asyncio.wait_for(
                self._apply(source, event, confirmation),
                timeout=self.processing_timeout,
            )
        except asyncio.TimeoutError as exc:
            error = f"Processing exceeded {self.processing_timeout}s"
            await self._record_failure(source, event, error)
            if schedule_replay:
                self._schedule_replay(source, event.id)
            raise RetryableProcessingError(error, details={"event_id": event.id}) from exc
        except _INTEGRITY_ERRORS as exc:
            error = f"Order integrity violation: {exc.message}"
            await self._record_failure(source, event, error)
            await self.alerter.notify(
                "Payment captured but the order could not be created",
                source=source,
                event_id=event.id,
                external_id=confirmation.external_id if confirmation else None,
                cart_id=confirmation.cart_id if confirmation else None,
                error=exc.message,
            )
            raise OrderIntegrityError(error, details={"event_id": event.id, **(exc.details or {})}) from exc
        except Exception as exc:
            await self._record_failure(source, event, str(exc) or type(exc).__name__)
            raise RetryableProcessingError(
                "Webhook processing failed",
                details={"event_id": event.id, "error": str(exc)},
            ) from exc

        log_domain_events(logger, events, event_id=event.id)
        if created and order is not None:
            self._notify_order_created(order)
        return ack

    async def _apply(
        self,
        source: str,
        event: WebhookEvent,
        confirmation: Optional[PaymentConfirmation],
    ) -> tuple[WebhookAck, Optional[Order], bool, list]:
        intent = PROVIDER_EVENT_TO_INTENT.get(self.gateway.provider, {}).get(event.type)
        order: Optional[Order] = None
        created = False
        events: list = []

        async with self._uow_factory() as uow:
            ledger = IdempotencyLedger(uow.inbound_events)
            record = await ledger.claim(source, event.id)
            if record is None:
                # Another delivery committed the effects while we waited for the lock
                logger.info("webhook_duplicate_ignored", source=source, event_id=event.id, stage="claim")
                return WebhookAck(duplicate=True), None, False, []

            if intent == "payment_confirmed" and confirmation is not None:
                order, created, events = await self._create_order(uow, confirmation)
            elif intent in ("payment_failed", "checkout_expired"):
                obj = event.data.get("object") or {}
                logger.warning(
                    "payment_not_completed",
                    event_id=event.id,
                    event_type=event.type,
                    object_id=obj.get("id"),
                    cart_id=(obj.get("metadata") or {}).get("cart_id"),
                )
            else:
                logger.info("webhook_event_unhandled", event_id=event.id, event_type=event.type)

            await ledger.mark_processed(record)
            await uow.commit()

        ack = WebhookAck(
            processed=True,
            ignored=intent is None,
            order_number=order.order_number if order else None,
        )
        return ack, order, created, events

    async def _create_order(
        self,
        uow: AbstractUnitOfWork,
        confirmation: PaymentConfirmation,
    ) -> tuple[Order, bool, list]:
        existing = await self._existing_order(uow, confirmation)
        if existing is not None:
            return existing, False, []

        cart = await uow.carts.get_by_id(confirmation.cart_id, for_update=True)
        if cart is None:
            raise CartNotFoundException(confirmation.cart_id)
        if cart.status != CartStatus.ACTIVE:
            # A sibling event for the same payment may have converted the cart
            # while this transaction waited on the row lock.
            existing = await self._existing_order(uow, confirmation)
            if existing is not None:
                return existing, False, []
            raise CheckoutValidationException([f"Cart {cart.id} was already converted"])
        if confirmation.user_id and cart.user_id and confirmation.user_id != cart.user_id:
            logger.warning(
                "payment_cart_owner_mismatch",
                cart_id=cart.id,
                external_id=confirmation.external_id,
            )

        inventory = InventoryReservationManager(uow.inventory, low_stock_threshold=self.low_stock_threshold)
        domain = OrderDomainService(uow.orders, uow.carts, uow.catalog, inventory)
        order = await domain.create_from_cart(
            cart,
            CapturedPayment(
                external_id=confirmation.external_id,
                amount=confirmation.amount,
                currency=confirmation.currency,
                method=self.gateway.provider.upper(),
                email=confirmation.email,
                shipping_address=confirmation.shipping_address,
                shipping_amount=confirmation.shipping_amount,
                tax_amount=confirmation.tax_amount,
                language=confirmation.language,
                transaction_data=confirmation.transaction_data,
            ),
        )
        return order, True, domain.get_domain_events() + inventory.get_domain_events()

    @staticmethod
    async def _existing_order(uow: AbstractUnitOfWork, confirmation: PaymentConfirmation) -> Optional[Order]:
        existing = await uow.orders.get_by_payment_external_id(confirmation.external_id)
        if existing is not None:
            logger.info(
                "order_already_exists_for_payment",
                external_id=confirmation.external_id,
                order_number=existing.order_number,
            )
        return existing

    async def _record_failure(self, source: str, event: WebhookEvent, error: str) -> None:
        async with self._uow_factory() as uow:
            ledger = IdempotencyLedger(uow.inbound_events)
            record = await ledger.record_failure(source, event.id, error)
            await uow.commit()
        logger.error(
            "webhook_processing_failed",
            source=source,
            event_id=event.id,
            event_type=event.type,
            retry_count=record.retry_count if record else None,
            error=error,
        )

    # ------------------------------------------------------------------
    # side effects after commit
    # ------------------------------------------------------------------
    def _schedule_replay(self, source: str, event_id: str) -> None:
        if self.replay_scheduler is None:
            return
        try:
            self.replay_scheduler(source, event_id)
        except Exception as exc:
            logger.error("webhook_replay_schedule_failed", source=source, event_id=event_id, error=str(exc))

    def _notify_order_created(self, order: Order) -> None:
        if self.notifier is None:
            return
        data = {
            "order_number": order.order_number,
            "total_amount": str(order.total_amount),
            "currency": order.currency,
            "language": order.language,
        }
        try:
            if order.order_email:
                self.notifier.send(order.order_email, "order_confirmation", data)
            if self.admin_email:
                self.notifier.send(self.admin_email, "admin_new_order", data)
        except Exception as exc:
            logger.error("order_notification_failed", order_number=order.order_number, error=str(exc))
