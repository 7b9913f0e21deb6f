"""
RMA Manager

Glues the case store, the transition engine and the notification service
together. Every action follows the same three steps:

1. read the case and compute the new product list / aggregate status in memory
2. write the whole case back in one update
3. email the customer about exactly the products that moved

Settings are read before step 2, so nothing after the write touches the store.

A notification failure after step 2 is reported in the result, never raised;
the status change stays committed.
"""

from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from rmadesk.errors import NotFoundError, ValidationError
from rmadesk.notifications import NotificationService
from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.observability.structured_logger import app_logger
from rmadesk.reference.repo import ContactRepo, CustomFieldRepo, ServiceCentreRepo, SettingsRepo, require
from rmadesk.rma import search, workflow
from rmadesk.rma.workflow import TransitionContext
from rmadesk.schemas import (
    ProductDraft,
    ProductLineItem,
    RaiseRmaRequest,
    RMACase,
    ServiceCentreRef,
    Settings,
    Status,
    StatusHistoryEntry,
    load,
    parse_case,
)
from rmadesk.store import DocumentStore, utc_now


PRODUCT_REQUIRED = (
    ("brand", "Brand"),
    ("model_number", "Model number"),
    ("serial_number", "Serial number"),
    ("problems_reported", "Problems reported"),
)

# Fields an operator may change through "edit RMA"; status, OTP and service
# centre only move through the workflow actions.
EDITABLE_CASE_FIELDS = {
    "comments": "comments",
    "contactName": "contact_name",
    "contactEmail": "contact_email",
    "contactPhone": "contact_phone",
    "contactCompany": "contact_company",
}
EDITABLE_PRODUCT_FIELDS = ("brand", "modelNumber", "serialNumber", "problemsReported")


def serialize_case(case: RMACase) -> Dict[str, Any]:
    """API representation of a case."""
    data = case.model_dump(by_alias=True, mode="json")
    data.pop("legacy", None)
    data["isMultiProduct"] = not case.legacy
    return data


class RMAManager:
    """Manages the RMA case lifecycle"""

    def __init__(self, store: DocumentStore, notifier: NotificationService, settings: SettingsRepo):
        self.store = store
        self.cases = store.collection("rmas")
        self.notifier = notifier
        self.settings = settings

    # =============================
    # Reads
    # =============================

    def get_rma(self, rma_id: str) -> RMACase:
        return parse_case(self.cases.get(rma_id))

    def list_rmas(self) -> List[RMACase]:
        cases = [parse_case(doc) for doc in self.cases.list()]
        return sorted(cases, key=lambda c: c.created_at or "", reverse=True)

    def list_stage(self, status: Status, query: str = "") -> List[RMACase]:
        try:
            status = Status(status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")
        return search.cases_at_stage(self.list_rmas(), status, query)

    def search(self, query: str) -> List[Dict[str, Any]]:
        return search.search_cases(self.list_rmas(), query)

    def dashboard(self) -> Dict[str, Any]:
        cases = self.list_rmas()
        counts = search.count_products_by_status(cases)
        for status, count in counts.items():
            metrics_collector.set_gauge('rma_products', count, labels={'status': status})
        return {
            "totalCases": len(cases),
            "productsByStatus": counts,
            "recent": [serialize_case(c) for c in cases[:5]],
        }

    # =============================
    # Raise RMA
    # =============================

    def raise_rma(self, data: Dict[str, Any], actor: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a case from the raise-RMA form and send the confirmation email.

        Every submitted product must have been saved on the form; an unsaved
        (still editing) product blocks the whole submission.
        """
        request = load(RaiseRmaRequest, data)
        if any(not draft.is_saved or draft.is_editing for draft in request.products):
            raise ValidationError("You have unsaved products. Please save or cancel editing before submitting.")
        if not request.products:
            raise ValidationError("Please add and save at least one product")

        contact = ContactRepo(self.store).get(request.contact_id)
        definitions = CustomFieldRepo(self.store).list()
        products = [self._build_product(draft, definitions) for draft in request.products]
        seen = set()
        for product in products:
            if product.id in seen:
                raise ValidationError(f"Duplicate product id: {product.id}")
            seen.add(product.id)

        now = utc_now()
        case = RMACase(
            contact_id=contact.id,
            contact_name=contact.name or contact.company,
            contact_email=contact.email,
            contact_phone=contact.phone,
            contact_company=contact.company,
            comments=request.comments,
            products=products,
            status=workflow.aggregate_status(p.status for p in products),
            status_history=[StatusHistoryEntry(status=Status.PROCESSING, timestamp=now,
                                               remark="RMA created", actor=actor)],
        )
        settings = self.settings.fetch()
        case = parse_case(self.cases.insert(case.to_document(), doc_id=self._generate_rma_number()))
        rma_id = case.id

        metrics_collector.increment_counter('rmas_created_total')
        app_logger.info("RMA created", rma_id=rma_id, products=len(products), contact_id=contact.id, actor=actor)

        notification = self._notify(case, Status.PROCESSING, case.products, settings)
        return {"rma": case, "notification": notification}

    def _build_product(self, draft: ProductDraft, definitions) -> ProductLineItem:
        require(draft.model_dump(), PRODUCT_REQUIRED)
        values = {}
        for definition in definitions:
            value = definition.coerce(draft.custom_fields.get(definition.name))
            if value is not None:
                values[definition.name] = value
        product = ProductLineItem(
            id=draft.id or uuid.uuid4().hex[:12],
            brand=draft.brand.strip(),
            model_number=draft.model_number.strip(),
            serial_number=draft.serial_number.strip(),
            problems_reported=draft.problems_reported.strip(),
            custom_fields=values,
        )
        # Dates and other typed values are stored as JSON
        return ProductLineItem.model_validate(product.model_dump(mode="json"))

    def _generate_rma_number(self) -> str:
        """RMA-YYYYMMDD-NNNN, numbered per day."""
        today = datetime.now().strftime("%Y%m%d")
        prefix = f"RMA-{today}-"
        count = sum(1 for doc in self.cases.list() if doc["id"].startswith(prefix))
        rma_number = f"{prefix}{count + 1:04d}"
        while self.cases.find(rma_number) is not None:
            count += 1
            rma_number = f"{prefix}{count + 1:04d}"
        return rma_number

    # =============================
    # Edit / delete
    # =============================

    def update_rma(self, rma_id: str, data: Dict[str, Any], actor: Optional[str] = None) -> RMACase:
        """Edit contact snapshot, comments and product details (never status)."""
        case = self.get_rma(rma_id)
        case_updates = {
            field: str(data[key] or "").strip()
            for key, field in EDITABLE_CASE_FIELDS.items() if key in data
        }
        if case_updates:
            case = case.model_copy(update=case_updates)

        product_edits = data.get("products") or []
        if not isinstance(product_edits, list) or not all(isinstance(edit, dict) for edit in product_edits):
            raise ValidationError("products must be a list of product objects")
        if product_edits:
            definitions = CustomFieldRepo(self.store).list()
            products = list(case.products)
            for edit in product_edits:
                index = case.index_of(edit.get("id"))
                products[index] = self._edit_product(products[index], edit, definitions)
            case = case.model_copy(update={"products": products})

        case = self._write(case)
        app_logger.info("RMA updated", rma_id=rma_id, actor=actor,
                        fields=sorted(case_updates), products=len(product_edits))
        return case

    def _edit_product(self, product: ProductLineItem, edit: Dict[str, Any], definitions) -> ProductLineItem:
        current = product.model_dump(by_alias=True, mode="json")
        current.update({k: edit[k] for k in EDITABLE_PRODUCT_FIELDS if k in edit})
        if "customFields" in edit:
            if not isinstance(edit["customFields"] or {}, dict):
                raise ValidationError("customFields must be an object")
            submitted = {**product.custom_fields, **(edit["customFields"] or {})}
            values = {}
            for definition in definitions:
                value = definition.coerce(submitted.get(definition.name))
                if value is not None:
                    values[definition.name] = value
            current["customFields"] = values
        edited = load(ProductLineItem, current)
        require(edited.model_dump(), PRODUCT_REQUIRED)
        return ProductLineItem.model_validate(edited.model_dump(mode="json"))

    def delete_rma(self, rma_id: str, actor: Optional[str] = None) -> bool:
        if not self.cases.delete(rma_id):
            raise NotFoundError("rmas", rma_id)
        app_logger.info("RMA deleted", rma_id=rma_id, actor=actor)
        return True

    # =============================
    # Workflow actions
    # =============================

    def send_to_service_centre(
        self,
        rma_id: str,
        product_ids: Iterable[str],
        service_centre_id: Optional[str] = None,
        assignments: Optional[Dict[str, str]] = None,
        remark: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send selected processing products to a service centre.

        ``assignments`` maps product id to centre id; products not in it use
        ``service_centre_id``.
        """
        product_ids = list(product_ids or [])
        assignments = assignments or {}
        centres = ServiceCentreRepo(self.store)
        contexts = {}
        for product_id in product_ids:
            centre_id = assignments.get(product_id) or service_centre_id
            if not centre_id:
                raise ValidationError("service centre required")
            centre = centres.get(centre_id)
            contexts[product_id] = TransitionContext(
                service_centre=ServiceCentreRef(id=centre.id, name=centre.name),
                remark=remark or None,
            )
        return self._transition(rma_id, product_ids, Status.IN_SERVICE_CENTRE, contexts, actor=actor)

    def mark_ready(self, rma_id: str, product_ids: Iterable[str], remark: Optional[str] = None,
                   actor: Optional[str] = None) -> Dict[str, Any]:
        """Mark selected products ready; they all share one freshly generated OTP."""
        product_ids = list(product_ids or [])
        batch_otp = workflow.generate_otp()
        contexts = {pid: TransitionContext(otp=batch_otp, remark=remark or None) for pid in product_ids}
        return self._transition(rma_id, product_ids, Status.READY, contexts, otp=batch_otp, actor=actor)

    def mark_delivered(
        self,
        rma_id: str,
        product_ids: Iterable[str],
        otps: Optional[Dict[str, str]] = None,
        otp: Optional[str] = None,
        remark: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Confirm handover of selected ready products.

        With requireOtp on, each product needs its code (``otps[product_id]``
        or the shared ``otp``). A wrong code rejects the whole batch and can
        simply be retried.
        """
        product_ids = list(product_ids or [])
        otps = otps or {}
        settings = self.settings.fetch()
        case = self.get_rma(rma_id)
        for product in workflow.select_products(case, product_ids, Status.READY):
            try:
                workflow.verify_delivery_otp(product, otps.get(product.id, otp), settings.require_otp)
            except ValidationError:
                metrics_collector.increment_counter('otp_rejections_total')
                app_logger.warning("Delivery OTP rejected", rma_id=rma_id, product_id=product.id, actor=actor)
                raise
        contexts = {pid: TransitionContext(remark=remark or None) for pid in product_ids}
        return self._transition(rma_id, product_ids, Status.DELIVERED, contexts, actor=actor, case=case,
                                settings=settings)

    def save_remarks(self, rma_id: str, remarks: Dict[str, str], actor: Optional[str] = None) -> RMACase:
        """Store per-product remarks without moving any status."""
        if not remarks:
            raise ValidationError("no products selected")
        case = self.get_rma(rma_id)
        products = list(case.products)
        for product_id, remark in remarks.items():
            index = case.index_of(product_id)
            products[index] = products[index].model_copy(update={"remark": (remark or "").strip() or None})
        case = case.model_copy(update={"products": products})
        case = self._write(case)
        app_logger.info("RMA remarks saved", rma_id=rma_id, products=list(remarks), actor=actor)
        return case

    def resend_otp(self, rma_id: str, product_id: str, actor: Optional[str] = None) -> Dict[str, Any]:
        """Replace a ready product's OTP and email the new code."""
        case = self.get_rma(rma_id)
        index = case.index_of(product_id)
        products = list(case.products)
        products[index] = workflow.resend_otp(products[index])
        settings = self.settings.fetch()
        case = self._write(case.model_copy(update={"products": products}))

        metrics_collector.increment_counter('otp_resends_total')
        app_logger.info("Delivery OTP regenerated", rma_id=rma_id, product_id=product_id, actor=actor)

        product = case.product(product_id)
        notification = self._notify(case, Status.READY, [product], settings, otp=product.otp)
        return {"rma": case, "notification": notification}

    # =============================
    # Helpers
    # =============================

    def _transition(
        self,
        rma_id: str,
        product_ids: List[str],
        target: Status,
        contexts: Dict[str, TransitionContext],
        otp: Optional[str] = None,
        actor: Optional[str] = None,
        case: Optional[RMACase] = None,
        settings: Optional[Settings] = None,
    ) -> Dict[str, Any]:
        case = case or self.get_rma(rma_id)
        settings = settings or self.settings.fetch()
        updated = self._write(workflow.apply_batch(case, product_ids, target, contexts, actor=actor))

        metrics_collector.increment_counter('rma_transitions_total', value=len(product_ids),
                                            labels={'to': target.value})
        app_logger.info(
            f"RMA products moved to {target.value}",
            rma_id=rma_id,
            product_ids=product_ids,
            aggregate_status=updated.status.value,
            actor=actor,
        )

        moved = workflow.products_at(updated, target, product_ids)
        notification = self._notify(updated, target, moved, settings, otp=otp)
        return {"rma": updated, "notification": notification}

    def _write(self, case: RMACase) -> RMACase:
        return parse_case(self.cases.update(case.id, case.to_document()))

    def _notify(self, case: RMACase, stage: Status, products: List[ProductLineItem], settings: Settings,
                otp: Optional[str] = None) -> Dict[str, Any]:
        # Settings are read before the case write; nothing here may touch the store
        return self.notifier.notify(case, stage, products, otp=otp, enabled=settings.email_notifications)
