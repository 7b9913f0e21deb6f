import re

import pytest

from rmadesk.errors import NotFoundError, StoreError, ValidationError
from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.reference.repo import CustomFieldRepo, ServiceCentreRepo, SettingsRepo
from rmadesk.schemas import Status


def draft(pid, brand, model, serial, **extra):
    data = {
        "id": pid,
        "brand": brand,
        "modelNumber": model,
        "serialNumber": serial,
        "problemsReported": "Does not power on",
        "isSaved": True,
    }
    data.update(extra)
    return data


def raise_two(manager, contact):
    return manager.raise_rma({
        "contactId": contact.id,
        "comments": "Dropped off at front desk",
        "products": [draft("A", "Acme", "X1", "SN-A"), draft("B", "Zeta", "Y2", "SN-B")],
    })


def test_two_product_case_end_to_end(manager, contact, centre, sender):
    created = raise_two(manager, contact)
    case = created["rma"]
    assert re.match(r"^RMA-\d{8}-0001$", case.id)
    assert case.status == Status.PROCESSING
    assert case.contact_email == "jordan@example.com"
    assert created["notification"]["sent"] is True
    assert sender.sent[-1].subject == "RMA Material Received"

    case = manager.send_to_service_centre(case.id, ["A"], service_centre_id=centre.id)["rma"]
    assert case.status == Status.IN_SERVICE_CENTRE
    assert case.product("A").service_centre_label == "Centre1"
    assert case.product("B").status == Status.PROCESSING
    assert "SN-A" in sender.sent[-1].text and "SN-B" not in sender.sent[-1].text

    case = manager.mark_ready(case.id, ["A"])["rma"]
    otp_a = case.product("A").otp
    assert re.match(r"^\d{6}$", otp_a)
    assert case.status == Status.IN_SERVICE_CENTRE
    assert otp_a in sender.sent[-1].text

    case = manager.send_to_service_centre(case.id, ["B"], service_centre_id=centre.id)["rma"]
    assert case.status == Status.IN_SERVICE_CENTRE

    case = manager.mark_ready(case.id, ["B"])["rma"]
    assert case.status == Status.READY
    otp_b = case.product("B").otp

    case = manager.mark_delivered(case.id, ["A"], otps={"A": otp_a})["rma"]
    assert case.product("A").status == Status.DELIVERED
    assert case.product("A").delivered_at
    assert case.status == Status.READY

    case = manager.mark_delivered(case.id, ["B"], otp=otp_b)["rma"]
    assert case.status == Status.DELIVERED
    assert sender.sent[-1].subject == "RMA Products Delivered"

    # created + six product transitions
    assert len(case.status_history) == 7


def test_ready_batch_shares_one_otp(manager, contact, centre):
    case = raise_two(manager, contact)["rma"]
    manager.send_to_service_centre(case.id, ["A", "B"], service_centre_id=centre.id)
    case = manager.mark_ready(case.id, ["A", "B"])["rma"]
    assert case.product("A").otp == case.product("B").otp


def test_raise_requires_saved_products(manager, contact):
    with pytest.raises(ValidationError, match="You have unsaved products"):
        manager.raise_rma({"contactId": contact.id,
                           "products": [draft("A", "Acme", "X1", "SN-A", isSaved=False)]})
    with pytest.raises(ValidationError, match="Please add and save at least one product"):
        manager.raise_rma({"contactId": contact.id, "products": []})
    with pytest.raises(ValidationError, match="Serial number is required"):
        manager.raise_rma({"contactId": contact.id, "products": [draft("A", "Acme", "X1", "")]})
    with pytest.raises(NotFoundError):
        manager.raise_rma({"contactId": "nobody", "products": [draft("A", "Acme", "X1", "SN-A")]})
    assert manager.list_rmas() == []


def test_raise_coerces_custom_fields(manager, contact, store):
    fields = CustomFieldRepo(store)
    fields.create({"name": "purchaseDate", "type": "date", "required": True})
    fields.create({"name": "boxIncluded", "type": "checkbox"})

    with pytest.raises(ValidationError, match="Purchase Date is required"):
        manager.raise_rma({"contactId": contact.id, "products": [draft("A", "Acme", "X1", "SN-A")]})

    case = manager.raise_rma({"contactId": contact.id, "products": [
        draft("A", "Acme", "X1", "SN-A", customFields={"purchaseDate": "2024-05-06", "boxIncluded": "on"}),
    ]})["rma"]
    assert case.product("A").custom_fields == {"purchaseDate": "2024-05-06", "boxIncluded": True}


def test_missing_service_centre(manager, contact):
    case = raise_two(manager, contact)["rma"]
    with pytest.raises(ValidationError, match="service centre required"):
        manager.send_to_service_centre(case.id, ["A"])
    assert manager.get_rma(case.id).product("A").status == Status.PROCESSING


def test_per_product_service_centre_assignment(manager, contact, centre, store):
    other = ServiceCentreRepo(store).create({"name": "North Hub"})
    case = raise_two(manager, contact)["rma"]
    case = manager.send_to_service_centre(case.id, ["A", "B"], service_centre_id=centre.id,
                                          assignments={"B": other.id}, remark="Courier")["rma"]
    assert case.product("A").service_centre_label == "Centre1"
    assert case.product("B").service_centre_label == "North Hub"
    assert case.product("B").remark == "Courier"


def ready_case(manager, contact, centre):
    case = raise_two(manager, contact)["rma"]
    manager.send_to_service_centre(case.id, ["A", "B"], service_centre_id=centre.id)
    return manager.mark_ready(case.id, ["A", "B"])["rma"]


def test_wrong_otp_keeps_product_ready(manager, contact, centre):
    case = ready_case(manager, contact, centre)
    before = metrics_collector.get_counter('otp_rejections_total')

    with pytest.raises(ValidationError, match="incorrect OTP"):
        manager.mark_delivered(case.id, ["A"], otp="000000")
    with pytest.raises(ValidationError, match="OTP is required"):
        manager.mark_delivered(case.id, ["A"], otp="")

    assert manager.get_rma(case.id).product("A").status == Status.READY
    assert metrics_collector.get_counter('otp_rejections_total') == before + 2

    otp = case.product("A").otp
    delivered = manager.mark_delivered(case.id, ["A"], otp=otp)["rma"]
    assert delivered.product("A").status == Status.DELIVERED


def test_delivery_without_otp_when_not_required(manager, contact, centre, store):
    case = ready_case(manager, contact, centre)
    SettingsRepo(store).save({"requireOtp": False})
    case = manager.mark_delivered(case.id, ["A", "B"])["rma"]
    assert case.status == Status.DELIVERED


def test_resend_otp_invalidates_old_code(manager, contact, centre, sender):
    case = ready_case(manager, contact, centre)
    old = case.product("A").otp

    result = manager.resend_otp(case.id, "A")
    new = result["rma"].product("A").otp
    assert new != old
    assert result["rma"].product("A").status == Status.READY
    assert result["rma"].product("B").otp == old
    assert new in sender.sent[-1].text
    assert "SN-B" not in sender.sent[-1].text

    with pytest.raises(ValidationError, match="incorrect OTP"):
        manager.mark_delivered(case.id, ["A"], otp=old)


def test_notification_failure_keeps_transition(manager, contact, centre, sender):
    case = raise_two(manager, contact)["rma"]
    sender.fail = True
    result = manager.send_to_service_centre(case.id, ["A"], service_centre_id=centre.id)
    assert result["notification"]["sent"] is False
    assert "both providers" in result["notification"]["error"]
    assert manager.get_rma(case.id).product("A").status == Status.IN_SERVICE_CENTRE


def test_email_notifications_off(manager, contact, store, sender):
    SettingsRepo(store).save({"emailNotifications": False})
    result = raise_two(manager, contact)
    assert result["notification"]["skipped"] is True
    assert sender.sent == []


def test_remarks_edit_and_delete(manager, contact):
    case = raise_two(manager, contact)["rma"]

    case = manager.save_remarks(case.id, {"B": "Awaiting parts"})
    assert case.product("B").remark == "Awaiting parts"
    assert case.product("B").status == Status.PROCESSING

    case = manager.update_rma(case.id, {
        "comments": "Updated",
        "status": "delivered",
        "products": [{"id": "A", "serialNumber": "SN-A2"}],
    })
    assert case.comments == "Updated"
    assert case.status == Status.PROCESSING
    assert case.product("A").serial_number == "SN-A2"

    assert manager.delete_rma(case.id) is True
    with pytest.raises(NotFoundError):
        manager.get_rma(case.id)


def test_legacy_case_moves_to_products_array(manager, store, centre):
    store.collection("rmas").create({
        "contactName": "Morgan Fox",
        "contactEmail": "morgan@example.org",
        "brand": "Globex",
        "modelNumber": "G5",
        "serialNumber": "GX-9",
        "status": "processing",
    }, doc_id="RMA-OLD")

    legacy = manager.get_rma("RMA-OLD")
    assert legacy.legacy is True

    case = manager.send_to_service_centre("RMA-OLD", ["legacy"], service_centre_id=centre.id)["rma"]
    assert case.legacy is False
    assert case.status == Status.IN_SERVICE_CENTRE

    stored = store.collection("rmas").get("RMA-OLD")
    assert stored["brand"] is None
    assert stored["products"][0]["serialNumber"] == "GX-9"


def test_dashboard_and_search(manager, contact, centre):
    case = raise_two(manager, contact)["rma"]
    manager.send_to_service_centre(case.id, ["A"], service_centre_id=centre.id)

    dashboard = manager.dashboard()
    assert dashboard["totalCases"] == 1
    assert dashboard["productsByStatus"]["processing"] == 1
    assert dashboard["productsByStatus"]["in_service_centre"] == 1

    assert len(manager.search("SN-B")) == 1
    assert [c.id for c in manager.list_stage("in_service_centre")] == [case.id]
    with pytest.raises(ValidationError):
        manager.list_stage("archived")


def test_raise_rejects_duplicate_product_ids(manager, contact):
    with pytest.raises(ValidationError, match="Duplicate product id: p1"):
        manager.raise_rma({"contactId": contact.id, "products": [
            draft("p1", "Acme", "X1", "SN-A"), draft("p1", "Zeta", "Y2", "SN-B"),
        ]})
    assert manager.list_rmas() == []


def test_products_without_ids_get_distinct_ids(manager, contact):
    case = manager.raise_rma({"contactId": contact.id, "products": [
        draft(None, "Acme", "X1", "SN-A"), draft(None, "Zeta", "Y2", "SN-B"),
    ]})["rma"]
    ids = [p.id for p in case.products]
    assert all(ids) and len(set(ids)) == 2


def test_settings_failure_aborts_before_the_case_write(manager, contact, centre, monkeypatch):
    case = raise_two(manager, contact)["rma"]

    def unavailable():
        raise StoreError("store unavailable")
    monkeypatch.setattr(manager.settings, "fetch", unavailable)

    with pytest.raises(StoreError):
        manager.send_to_service_centre(case.id, ["A"], service_centre_id=centre.id)
    with pytest.raises(StoreError):
        manager.raise_rma({"contactId": contact.id, "products": [draft("C", "Acme", "X1", "SN-C")]})
    assert manager.get_rma(case.id).product("A").status == Status.PROCESSING
    assert len(manager.list_rmas()) == 1


def test_action_result_is_not_read_back_after_the_write(manager, contact, centre, monkeypatch):
    case = raise_two(manager, contact)["rma"]

    def unavailable(doc_id):
        raise StoreError("store unavailable")
    original_update = manager.cases.update

    def update_then_break_reads(doc_id, partial):
        written = original_update(doc_id, partial)
        monkeypatch.setattr(manager.cases, "get", unavailable)
        return written
    monkeypatch.setattr(manager.cases, "update", update_then_break_reads)

    result = manager.send_to_service_centre(case.id, ["A"], service_centre_id=centre.id)
    assert result["rma"].product("A").status == Status.IN_SERVICE_CENTRE
    assert result["notification"]["sent"] is True
