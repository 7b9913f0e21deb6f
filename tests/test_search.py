from rmadesk.rma.search import cases_at_stage, count_products_by_status, search_cases
from rmadesk.schemas import ProductLineItem, RMACase, Status, parse_case


def sample_cases():
    multi = RMACase(
        id="RMA-20250101-0001",
        contact_name="Jordan Lee",
        contact_email="jordan@example.com",
        contact_phone="+1 555 0123",
        contact_company="Example Retail",
        products=[
            ProductLineItem(id="a", brand="Acme", model_number="X1", serial_number="SN-111"),
            ProductLineItem(id="b", brand="Zeta", model_number="Y2", serial_number="SN-222",
                            status=Status.READY, otp="123456"),
        ],
        status=Status.IN_SERVICE_CENTRE,
    )
    legacy = parse_case({
        "id": "RMA-OLD",
        "contactName": "Morgan Fox",
        "contactEmail": "morgan@example.org",
        "contactPhone": "0400 111 222",
        "brand": "Globex",
        "modelNumber": "G5",
        "serialNumber": "GX-9",
        "status": "delivered",
    })
    return [multi, legacy]


def test_serial_match_returns_only_that_product():
    rows = search_cases(sample_cases(), "sn-222")
    assert len(rows) == 1
    row = rows[0]
    assert row["id"] == "RMA-20250101-0001"
    assert row["productId"] == "b"
    assert row["productIndex"] == 1
    assert row["status"] == "ready"
    assert row["statusLabel"] == "Ready to Dispatch"
    assert row["isMultiProduct"] is True


def test_case_level_match_returns_every_product():
    rows = search_cases(sample_cases(), "JORDAN")
    assert [r["productId"] for r in rows] == ["a", "b"]


def test_blank_query_returns_nothing():
    assert search_cases(sample_cases(), "") == []
    assert search_cases(sample_cases(), "   ") == []


def test_phone_and_legacy_matches():
    rows = search_cases(sample_cases(), "0400 111")
    assert len(rows) == 1
    assert rows[0]["id"] == "RMA-OLD"
    assert rows[0]["isMultiProduct"] is False
    assert search_cases(sample_cases(), "rma-old")[0]["brand"] == "Globex"


def test_stage_listing_filters_live():
    cases = sample_cases()
    assert [c.id for c in cases_at_stage(cases, Status.READY)] == ["RMA-20250101-0001"]
    assert [c.id for c in cases_at_stage(cases, Status.DELIVERED)] == ["RMA-OLD"]
    assert cases_at_stage(cases, Status.PROCESSING, "example retail")[0].id == "RMA-20250101-0001"
    assert cases_at_stage(cases, Status.PROCESSING, "globex") == []


def test_dashboard_counts_products():
    counts = count_products_by_status(sample_cases())
    assert counts == {"processing": 1, "in_service_centre": 0, "ready": 1, "delivered": 1}
