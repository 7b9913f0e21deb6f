import pytest

from rmadesk.errors import ValidationError
from rmadesk.notifications import NotificationService
from rmadesk.schemas import ProductLineItem, RMACase, ServiceCentreRef, Status


def three_product_case():
    products = [
        ProductLineItem(id="a", brand="Acme", model_number="X1", serial_number="SER-AAA",
                        status=Status.READY, otp="654321",
                        service_centre=ServiceCentreRef(id="sc1", name="Centre1")),
        ProductLineItem(id="b", brand="Zeta", model_number="Y2", serial_number="SER-BBB",
                        status=Status.READY, otp="654321", remark="Screen replaced"),
        ProductLineItem(id="c", brand="Globex", model_number="Z3", serial_number="SER-CCC"),
    ]
    return RMACase(id="RMA-20250101-0001", contact_name="Jordan Lee", contact_email="jordan@example.com",
                   products=products, status=Status.IN_SERVICE_CENTRE)


def test_ready_email_lists_only_moved_products_and_otp():
    case = three_product_case()
    message = NotificationService.compose(case, Status.READY, case.products, otp="654321")

    assert message.subject == "RMA Products Ready for Dispatch"
    assert message.to_email == "jordan@example.com"
    for body in (message.text, message.html):
        assert "Jordan Lee" in body
        assert "RMA-20250101-0001" in body
        assert "654321" in body
        assert "SER-AAA" in body
        assert "SER-BBB" in body
        assert "SER-CCC" not in body
    assert "Centre1" in message.text
    assert "Screen replaced" in message.html


def test_ready_email_needs_otp():
    case = three_product_case()
    with pytest.raises(ValidationError):
        NotificationService.compose(case, Status.READY, case.products)


def test_other_stages_never_show_otp():
    case = three_product_case()
    message = NotificationService.compose(case, Status.PROCESSING, case.products, otp="654321")
    assert message.subject == "RMA Material Received"
    assert "654321" not in message.text
    assert "SER-CCC" in message.text
    assert "SER-AAA" not in message.text


def test_html_body_escapes_customer_text():
    case = three_product_case()
    case.products[2] = case.products[2].model_copy(update={"problems_reported": "<script>x</script>"})
    message = NotificationService.compose(case, Status.PROCESSING, case.products)
    assert "<script>" not in message.html
    assert "&lt;script&gt;" in message.html


def test_notify_reports_outcomes(sender):
    case = three_product_case()
    service = NotificationService(sender, company_name="Acme Returns")

    sent = service.notify(case, Status.READY, case.products, otp="654321")
    assert sent == {"sent": True, "provider": "fake", "message_id": "msg-1"}
    assert "Acme Returns" in sender.sent[0].text

    skipped = service.notify(case, Status.READY, case.products, otp="654321", enabled=False)
    assert skipped["sent"] is False and skipped["skipped"] is True
    assert len(sender.sent) == 1

    sender.fail = True
    failed = service.notify(case, Status.READY, case.products, otp="654321")
    assert failed["sent"] is False
    assert failed["error"] == "Email sending failed with both providers"
    assert failed["details"]["primary"] == "brevo: HTTP 500"


def test_notify_without_customer_email(sender):
    case = three_product_case().model_copy(update={"contact_email": ""})
    outcome = NotificationService(sender).notify(case, Status.PROCESSING, case.products)
    assert outcome["sent"] is False
    assert sender.sent == []
