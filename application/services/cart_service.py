"""Application layer orchestration for carts (application/services)."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from domain.cart.calculation import calculate_cart, validate_cart_for_checkout
from domain.cart.entity import Cart
from domain.cart.service import CartDomainService
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.service import InventoryReservationManager
from application.dto import (
    CalculatedLineDTO,
    CartCalculationDTO,
    CartDTO,
    CartItemDTO,
    CheckoutValidationDTO,
)
from application.utils.events import log_domain_events
from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


def normalize_currency(currency: Optional[str], default: str) -> str:
    value = (currency or default).strip().upper()
    if len(value) != 3 or not value.isalpha():
        raise DomainValidationException(f"Invalid currency: {currency}", field="currency")
    return value


class CartApplicationService:
    """Cart workflows: each mutation keeps cart lines and stock reservations in one transaction."""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        default_currency: Optional[str] = None,
        anonymous_ttl: Optional[timedelta] = None,
        low_stock_threshold: Optional[int] = None,
    ):
        self._uow_factory = uow_factory
        self.default_currency = default_currency or settings.cart.default_currency
        self.anonymous_ttl = anonymous_ttl or timedelta(days=settings.cart.anonymous_ttl_days)
        self.low_stock_threshold = (
            low_stock_threshold
            if low_stock_threshold is not None
            else settings.inventory.default_low_stock_threshold
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _services(self, uow: AbstractUnitOfWork) -> tuple[CartDomainService, InventoryReservationManager]:
        inventory = InventoryReservationManager(uow.inventory, low_stock_threshold=self.low_stock_threshold)
        carts = CartDomainService(
            uow.carts,
            uow.catalog,
            inventory,
            default_currency=self.default_currency,
            anonymous_ttl=self.anonymous_ttl,
        )
        return carts, inventory

    @staticmethod
    def _to_dto(cart: Cart) -> CartDTO:
        return CartDTO(
            id=cart.id or 0,
            status=cart.status.value,
            currency=cart.currency,
            user_id=cart.user_id,
            anonymous_id=cart.anonymous_id,
            items=[
                CartItemDTO(variant_id=i.variant_id, quantity=i.quantity, added_at=i.added_at)
                for i in cart.items
            ],
            item_count=cart.item_count,
            expires_at=cart.expires_at,
            updated_at=cart.updated_at,
        )

    # ------------------------------------------------------------------
    # use cases
    # ------------------------------------------------------------------
    async def get_cart(self, *, user_id: Optional[str], anonymous_id: Optional[str]) -> CartDTO:
        async with self._uow_factory() as uow:
            carts, _ = self._services(uow)
            cart = await carts.get_or_create(user_id=user_id, anonymous_id=anonymous_id)
            await uow.commit()
        return self._to_dto(cart)

    async def add_item(
        self,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        variant_id: int,
        quantity: int,
    ) -> CartDTO:
        async with self._uow_factory() as uow:
            carts, inventory = self._services(uow)
            cart = await carts.get_or_create(user_id=user_id, anonymous_id=anonymous_id, for_update=True)
            await carts.add_item(cart, variant_id, quantity)
            await uow.commit()
        log_domain_events(logger, inventory.get_domain_events(), cart_id=cart.id)
        logger.info("cart_item_added", cart_id=cart.id, variant_id=variant_id, quantity=quantity)
        return self._to_dto(cart)

    async def update_item(
        self,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        variant_id: int,
        quantity: int,
    ) -> CartDTO:
        async with self._uow_factory() as uow:
            carts, inventory = self._services(uow)
            cart = await carts.get_or_create(user_id=user_id, anonymous_id=anonymous_id, for_update=True)
            await carts.update_item(cart, variant_id, quantity)
            await uow.commit()
        log_domain_events(logger, inventory.get_domain_events(), cart_id=cart.id)
        logger.info("cart_item_updated", cart_id=cart.id, variant_id=variant_id, quantity=quantity)
        return self._to_dto(cart)

    async def remove_item(
        self,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        variant_id: int,
    ) -> CartDTO:
        async with self._uow_factory() as uow:
            carts, inventory = self._services(uow)
            cart = await carts.get_or_create(user_id=user_id, anonymous_id=anonymous_id, for_update=True)
            await carts.remove_item(cart, variant_id)
            await uow.commit()
        log_domain_events(logger, inventory.get_domain_events(), cart_id=cart.id)
        logger.info("cart_item_removed", cart_id=cart.id, variant_id=variant_id)
        return self._to_dto(cart)

    async def merge(self, *, user_id: Optional[str], anonymous_id: Optional[str]) -> CartDTO:
        """Fold the visitor's anonymous cart into the signed-in user's cart."""
        if not user_id or not anonymous_id:
            raise DomainValidationException(
                "Both X-User-ID and X-Anonymous-ID are required to merge carts", field="owner"
            )
        async with self._uow_factory() as uow:
            carts, inventory = self._services(uow)
            merged = await carts.merge_anonymous_into_user(anonymous_id, user_id)
            if merged is None:
                merged = await carts.get_or_create(user_id=user_id)
            await uow.commit()
        log_domain_events(logger, inventory.get_domain_events(), cart_id=merged.id)
        logger.info("cart_merged", cart_id=merged.id, item_count=merged.item_count)
        return self._to_dto(merged)

    async def calculate(
        self,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        currency: Optional[str] = None,
    ) -> CartCalculationDTO:
        async with self._uow_factory() as uow:
            carts, _ = self._services(uow)
            cart = await carts.get_or_create(user_id=user_id, anonymous_id=anonymous_id)
            code = normalize_currency(currency, cart.currency)
            variants = await uow.catalog.get_variants([i.variant_id for i in cart.items])
            await uow.commit()
        calculation = calculate_cart(cart, variants, code)
        if calculation.skipped_variant_ids:
            logger.error(
                "cart_lines_without_price",
                cart_id=cart.id,
                currency=code,
                variant_ids=list(calculation.skipped_variant_ids),
            )
        return CartCalculationDTO(
            currency=calculation.currency,
            items=[CalculatedLineDTO.model_validate(line) for line in calculation.items],
            subtotal=calculation.subtotal,
            item_count=calculation.item_count,
            skipped_variant_ids=list(calculation.skipped_variant_ids),
            calculated_at=calculation.calculated_at,
        )

    async def validate_checkout(
        self,
        *,
        user_id: Optional[str],
        anonymous_id: Optional[str],
        currency: Optional[str] = None,
        clean: bool = False,
    ) -> CheckoutValidationDTO:
        """Pre-payment gate; with ``clean`` invalid lines are dropped before validating."""
        async with self._uow_factory() as uow:
            carts, inventory = self._services(uow)
            cart = await carts.get_or_create(user_id=user_id, anonymous_id=anonymous_id, for_update=True)
            code = normalize_currency(currency, cart.currency)
            removed = await carts.clean_invalid_items(cart) if clean else []
            variants = await uow.catalog.get_variants([i.variant_id for i in cart.items])
            result = validate_cart_for_checkout(cart, variants, code)
            await uow.commit()
        if removed:
            log_domain_events(logger, inventory.get_domain_events(), cart_id=cart.id)
            logger.info("cart_invalid_items_removed", cart_id=cart.id, variant_ids=removed)
        if not result.valid:
            logger.info("checkout_validation_failed", cart_id=cart.id, currency=code, errors=list(result.errors))
        return CheckoutValidationDTO(valid=result.valid, errors=list(result.errors), removed_variant_ids=removed)

    async def release_expired(self, *, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            carts, inventory = self._services(uow)
            released = await carts.release_expired(now=now, limit=limit or settings.cart.expired_sweep_batch_size)
            await uow.commit()
        log_domain_events(logger, inventory.get_domain_events())
        if released:
            logger.info("expired_carts_released", count=released)
        return released
