"""Linear-scan search over RMA cases for the dashboard and the stage tabs."""

from typing import Dict, Iterable, List

from rmadesk.schemas import RMACase, STATUS_LABELS, Status


def _contains(value, query: str) -> bool:
    return bool(value) and query in str(value).lower()


def search_cases(cases: Iterable[RMACase], query: str) -> List[Dict]:
    """
    Global dashboard search.

    One result row per matching product. Contact name, email, case id, brand,
    model and serial match case-insensitively; the phone number matches the
    query as typed. A blank query returns nothing.
    """
    raw = (query or "").strip()
    if not raw:
        return []
    needle = raw.lower()

    results = []
    for case in cases:
        case_hit = (
            _contains(case.contact_name, needle)
            or _contains(case.contact_email, needle)
            or _contains(case.id, needle)
            or (bool(case.contact_phone) and raw in case.contact_phone)
        )
        for index, product in enumerate(case.products):
            product_hit = (
                _contains(product.brand, needle)
                or _contains(product.model_number, needle)
                or _contains(product.serial_number, needle)
            )
            if case_hit or product_hit:
                results.append({
                    "id": case.id,
                    "productIndex": index,
                    "productId": product.id,
                    "contactName": case.contact_name,
                    "contactPhone": case.contact_phone,
                    "brand": product.brand,
                    "modelNumber": product.model_number,
                    "serialNumber": product.serial_number,
                    "status": product.status.value,
                    "statusLabel": STATUS_LABELS[product.status],
                    "serviceCentre": product.service_centre_label,
                    "isMultiProduct": not case.legacy,
                })
    return results


def cases_at_stage(cases: Iterable[RMACase], status: Status, query: str = "") -> List[RMACase]:
    """
    Cases shown on a stage tab: any product at ``status`` (legacy cases by
    their own status), filtered live by contact name/company and product
    brand/model/serial. An empty query lists every case at the stage.
    """
    status = Status(status)
    needle = (query or "").strip().lower()
    listed = []
    for case in cases:
        if case.legacy:
            at_stage = case.status == status
        else:
            at_stage = any(p.status == status for p in case.products)
        if not at_stage:
            continue
        if needle and not (
            _contains(case.contact_name, needle)
            or _contains(case.contact_company, needle)
            or any(
                _contains(p.brand, needle) or _contains(p.model_number, needle) or _contains(p.serial_number, needle)
                for p in case.products
            )
        ):
            continue
        listed.append(case)
    return listed


def count_products_by_status(cases: Iterable[RMACase]) -> Dict[str, int]:
    """Dashboard tiles: number of products per status across all cases."""
    counts = {status.value: 0 for status in Status}
    for case in cases:
        for product in case.products:
            counts[product.status.value] += 1
    return counts
