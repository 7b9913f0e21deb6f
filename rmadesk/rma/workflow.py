"""
RMA status transition engine.

Every product in a case moves along one fixed line:

    processing -> in_service_centre -> ready -> delivered

- processing -> in_service_centre needs a service centre
- in_service_centre -> ready stamps a delivery OTP (always, whatever the
  requireOtp setting says)
- ready -> delivered checks that OTP when requireOtp is on, then stamps
  deliveredAt
- delivered is terminal

The case status is never set by hand; it is derived from the product statuses
by ``aggregate_status``. Everything in this module is pure: functions return
updated copies and never touch the store.
"""

from __future__ import annotations
import random
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from rmadesk.errors import ValidationError
from rmadesk.schemas import ProductLineItem, RMACase, ServiceCentreRef, Status, StatusHistoryEntry


NEXT_STATUS: Dict[Status, Optional[Status]] = {
    Status.PROCESSING: Status.IN_SERVICE_CENTRE,
    Status.IN_SERVICE_CENTRE: Status.READY,
    Status.READY: Status.DELIVERED,
    Status.DELIVERED: None,
}

OTP_MIN = 100000
OTP_MAX = 999999

_rng = random.SystemRandom()


class TransitionContext:
    """Inputs a transition may need besides the product itself."""

    def __init__(
        self,
        service_centre: Optional[ServiceCentreRef] = None,
        remark: Optional[str] = None,
        otp: Optional[str] = None,
        timestamp: Optional[str] = None,
    ):
        self.service_centre = service_centre
        self.remark = remark
        self.otp = otp
        self.timestamp = timestamp


def next_status(current: Status) -> Optional[Status]:
    """Status a product moves to from ``current``; ``None`` once delivered."""
    return NEXT_STATUS[Status(current)]


def generate_otp() -> str:
    """Six digit delivery code, uniform over 100000-999999."""
    return str(_rng.randint(OTP_MIN, OTP_MAX))


def advance_product(product: ProductLineItem, target: Status, context: Optional[TransitionContext] = None) -> ProductLineItem:
    """Return a copy of ``product`` moved one step forward to ``target``."""
    context = context or TransitionContext()
    target = Status(target)
    expected = next_status(product.status)
    if expected is None:
        raise ValidationError(f"Product {product.id} is already delivered; no further action")
    if target != expected:
        raise ValidationError(
            f"Product {product.id} cannot move from {product.status.value} to {target.value}"
        )

    updates = {"status": target}
    if context.remark is not None:
        updates["remark"] = context.remark

    if target == Status.IN_SERVICE_CENTRE:
        centre = context.service_centre
        if centre is None or not centre.id:
            raise ValidationError("service centre required")
        updates.update(
            service_centre=centre,
            service_centre_id=centre.id,
            service_centre_name=centre.name,
        )
    elif target == Status.READY:
        updates.update(otp=context.otp or generate_otp(), is_ready=True)
    elif target == Status.DELIVERED:
        updates.update(delivered_at=context.timestamp or _now(), is_delivered=True)

    return product.model_copy(update=updates)


def resend_otp(product: ProductLineItem) -> ProductLineItem:
    """Replace the OTP of a ready product; the old code stops working at once."""
    if product.status != Status.READY:
        raise ValidationError(f"Product {product.id} is not ready for dispatch; no OTP to resend")
    new_otp = generate_otp()
    while new_otp == product.otp:
        new_otp = generate_otp()
    return product.model_copy(update={"otp": new_otp})


def aggregate_status(statuses: Iterable[Status]) -> Status:
    """
    Case status derived from its product statuses.

    Checked in this order:
    1. every product delivered -> delivered
    2. every product ready or delivered -> ready
    3. any product in_service_centre or ready -> in_service_centre
    4. otherwise -> processing

    So one processing product next to a ready one reports in_service_centre:
    the case shows its most advanced stage until everything has caught up.
    """
    statuses = [Status(s) for s in statuses]
    if not statuses:
        return Status.PROCESSING
    if all(s == Status.DELIVERED for s in statuses):
        return Status.DELIVERED
    if all(s in (Status.READY, Status.DELIVERED) for s in statuses):
        return Status.READY
    if any(s in (Status.IN_SERVICE_CENTRE, Status.READY) for s in statuses):
        return Status.IN_SERVICE_CENTRE
    return Status.PROCESSING


def verify_delivery_otp(product: ProductLineItem, submitted: Optional[str], require_otp: bool) -> None:
    """Raise unless ``submitted`` releases ``product`` for delivery."""
    if not require_otp:
        return
    if not submitted:
        raise ValidationError("OTP is required")
    if submitted != product.otp:
        raise ValidationError("incorrect OTP")


def select_products(case: RMACase, product_ids: Iterable[str], eligible: Status) -> List[ProductLineItem]:
    """Resolve an operator selection, checking every product is at ``eligible``."""
    product_ids = list(dict.fromkeys(product_ids or []))
    if not product_ids:
        raise ValidationError("no products selected")
    selected = []
    for product_id in product_ids:
        product = case.product(product_id)
        if product.status != eligible:
            raise ValidationError(
                f"Product {product_id} is {product.status.value}, expected {Status(eligible).value}"
            )
        selected.append(product)
    return selected


def apply_batch(
    case: RMACase,
    product_ids: Iterable[str],
    target: Status,
    contexts: Dict[str, TransitionContext],
    actor: Optional[str] = None,
) -> RMACase:
    """
    Advance the selected products of ``case`` to ``target`` in one step.

    ``contexts`` maps product id to its transition inputs. Returns the updated
    case with its aggregate status recomputed and one history entry per moved
    product appended.
    """
    target = Status(target)
    eligible = _previous_status(target)
    selected = {p.id for p in select_products(case, product_ids, eligible)}
    timestamp = _now()

    products = []
    history = list(case.status_history)
    for index, product in enumerate(case.products):
        if product.id in selected:
            context = contexts.get(product.id) or TransitionContext()
            if context.timestamp is None:
                context.timestamp = timestamp
            product = advance_product(product, target, context)
            history.append(StatusHistoryEntry(
                status=target,
                timestamp=timestamp,
                remark=context.remark,
                product_index=index,
                product_id=product.id,
                actor=actor,
            ))
        products.append(product)

    return case.model_copy(update={
        "products": products,
        "status": aggregate_status(p.status for p in products),
        "status_history": history,
    })


def products_at(case: RMACase, status: Status, product_ids: Optional[Iterable[str]] = None) -> List[ProductLineItem]:
    """Products of ``case`` currently at ``status``, optionally limited to ``product_ids``."""
    wanted = set(product_ids) if product_ids is not None else None
    return [
        p for p in case.products
        if p.status == Status(status) and (wanted is None or p.id in wanted)
    ]


def _previous_status(target: Status) -> Status:
    for current, following in NEXT_STATUS.items():
        if following == target:
            return current
    raise ValidationError(f"No transition leads to {Status(target).value}")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
