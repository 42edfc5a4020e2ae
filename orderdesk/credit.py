"""Credit consumption by service type and top-up package crediting."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union
from uuid import UUID

from orderdesk.common import ZERO, to_cents
from orderdesk.errors import InsufficientBalanceError, InvalidPackageError, UnknownServiceTypeError
from orderdesk.ledger import BalanceLedger

logger = logging.getLogger(__name__)

CUSTOM_PACKAGE_KEY = "custom"
CUSTOM_CREDIT_UNIT_PRICE = Decimal("0.35")

SERVICE_CREDIT_COST: Mapping[str, Decimal] = MappingProxyType(
    {
        "scan_label": Decimal("0.35"),
        "empty_package": Decimal("1.00"),
        "design_2d": Decimal("1.00"),
        "design_3d": Decimal("2.00"),
        "embroidery_text": Decimal("1.25"),
        "embroidery_image": Decimal("1.75"),
        "sidebow": Decimal("1.50"),
        "poster_canvas": Decimal("1.50"),
    }
)


@dataclass(frozen=True)
class TopupPackage:
    key: str
    price: Decimal
    credits: Decimal
    discount: Decimal


TOPUP_PACKAGES: Mapping[str, TopupPackage] = MappingProxyType(
    {
        "basic": TopupPackage("basic", Decimal("1.50"), Decimal("1.00"), Decimal("0")),
        "standard": TopupPackage("standard", Decimal("14.50"), Decimal("10.00"), Decimal("0.03")),
        "premier": TopupPackage("premier", Decimal("70.00"), Decimal("50.00"), Decimal("0.07")),
        "ultra": TopupPackage("ultra", Decimal("135.00"), Decimal("100.00"), Decimal("0.10")),
    }
)


def service_cost(service_type: str) -> Decimal:
    try:
        return SERVICE_CREDIT_COST[service_type]
    except KeyError as exc:
        raise UnknownServiceTypeError(f"Unknown service type: {service_type}") from exc


def resolve_topup_package(package_key: str, custom_credits: Optional[Any] = None) -> TopupPackage:
    """Look up a fixed package, or price a custom one at the per-credit unit price."""
    if package_key == CUSTOM_PACKAGE_KEY:
        try:
            credits = to_cents(custom_credits)
        except ValueError as exc:
            raise InvalidPackageError(f"Invalid custom credit amount: {custom_credits!r}") from exc
        if credits <= ZERO:
            raise InvalidPackageError("Custom top-up requires a positive credit amount")
        return TopupPackage(
            key=CUSTOM_PACKAGE_KEY,
            price=to_cents(credits * CUSTOM_CREDIT_UNIT_PRICE),
            credits=credits,
            discount=Decimal("0"),
        )
    package = TOPUP_PACKAGES.get(package_key)
    if package is None:
        raise InvalidPackageError(f"Unknown top-up package: {package_key}")
    return package


class CreditService:
    def __init__(self, ledger: BalanceLedger) -> None:
        self.ledger = ledger

    def consume(
        self,
        account_id: Union[UUID, str],
        service_type: str,
        order_id: Optional[Union[UUID, str]] = None,
    ) -> Decimal:
        """Debit the service price; the balance pre-check gives a clean error before locking."""
        cost = service_cost(service_type)
        balance = self.ledger.get_balance(account_id)
        if balance < cost:
            raise InsufficientBalanceError(account_id, balance, cost)
        reference = None if order_id is None else str(order_id)
        return self.ledger.apply_change(account_id, cost, "debit", service_type, reference=reference)

    def apply_topup_package(
        self,
        account_id: Union[UUID, str],
        package_key: str,
        custom_credits: Optional[Any] = None,
    ) -> Decimal:
        package = resolve_topup_package(package_key, custom_credits)
        new_balance = self.ledger.credit_amount(
            account_id,
            package.credits,
            reason=f"topup:{package.key}",
            reference=package.key,
        )
        logger.info(
            "Top-up applied: account=%s package=%s credits=%s price=%s",
            account_id,
            package.key,
            package.credits,
            package.price,
        )
        return new_balance
