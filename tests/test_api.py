import io
import zipfile
from datetime import date
from decimal import Decimal

import httpx
import pytest
from openpyxl import load_workbook
from passlib.context import CryptContext

from bill_interpreter.extractors import FakeBillExtractor
from dependencies import get_extractor
from deps import get_current_active_user
from main import app
from models import ElectricityBill, ExtractionStatus, User
from services import config

TODAY = date(2024, 1, 15)


def make_zip(entries: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture
async def user(db):
    return await User.create(
        username="analyst",
        email="analyst@example.com",
        hashed_password=CryptContext(schemes=["bcrypt"]).hash("s3cret"),
    )


@pytest.fixture
async def client(user):
    app.dependency_overrides[get_current_active_user] = lambda: user
    app.dependency_overrides[get_extractor] = lambda: FakeBillExtractor(today=lambda: TODAY)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _upload(client, entries, name="bills.zip"):
    files = {"file": (name, make_zip(entries), "application/zip")}
    return await client.post("/uploads", files=files)


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_login_and_me(user):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        bad = await c.post("/login/access-token", data={"username": "analyst", "password": "nope"})
        assert bad.status_code == 401

        r = await c.post("/login/access-token", data={"username": "analyst", "password": "s3cret"})
        assert r.status_code == 200
        token = r.json()["access_token"]

        me = await c.get("/users/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["username"] == "analyst"

        refreshed = await c.post("/login/refresh-token", json={"refresh_token": r.json()["refresh_token"]})
        assert refreshed.status_code == 200
        assert (await c.post("/login/refresh-token", json={"refresh_token": token})).status_code == 401

        assert (await c.get("/uploads/1")).status_code == 401


async def test_upload_processes_bundle(client):
    r = await _upload(client, {
        "agosto.pdf": b"TEST_AMOUNT TEST_CONSUMPTION TEST_DATE",
        "setembro.png": b"OCR_AMOUNT",
        "quebrada.pdf": b"CORRUPTED_DATA",
    })
    assert r.status_code == 202
    body = r.json()
    assert body["message"] == "ZIP file bills.zip uploaded successfully. Processing 3 files."
    upload_id = body["upload_id"]

    # background tasks finish before the transport hands back the response
    status = (await client.get(f"/uploads/{upload_id}")).json()
    assert status["upload"]["status"] == "completed"
    assert status["upload"]["processed_files"] == 3
    assert status["upload"]["failed_files"] == 1
    by_name = {b["filename"]: b for b in status["bills"]}
    assert Decimal(by_name["agosto.pdf"]["total_amount"]) == Decimal("156.78")
    assert by_name["agosto.pdf"]["bill_date"] == "2023-08-15"
    assert by_name["quebrada.pdf"]["error_message"] == "Corrupted PDF data"

    report = (await client.get(f"/uploads/{upload_id}/report")).json()
    assert report["summary"]["total_bills"] == 3
    assert report["summary"]["successful_extractions"] == 2
    assert Decimal(report["summary"]["total_original_amount"]) == Decimal("156.78") + Decimal("98.76")


async def test_upload_rejects_non_zip(client):
    r = await client.post("/uploads", files={"file": ("bill.pdf", b"%PDF", "application/pdf")})
    assert r.status_code == 400

    r = await client.post("/uploads", files={"file": ("broken.zip", b"garbage", "application/zip")})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid ZIP file"


async def test_empty_zip_is_completed(client):
    r = await _upload(client, {})
    assert r.status_code == 202
    assert r.json()["status"] == "completed"


async def test_list_uploads_range_header(client):
    await _upload(client, {"a.pdf": b""}, name="one.zip")
    await _upload(client, {"b.pdf": b""}, name="two.zip")
    r = await client.get("/uploads", params={"range": "[0,0]", "sort": '["id","DESC"]'})
    assert r.status_code == 206
    assert r.headers["Content-Range"] == "items 0-0/2"
    assert [u["filename"] for u in r.json()] == ["two.zip"]


async def test_report_downloads(client):
    upload_id = (await _upload(client, {"a.pdf": b"TEST_DATE"})).json()["upload_id"]

    r = await client.get(f"/uploads/{upload_id}/report/download", params={"format": "csv"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "relatorio_upload_" in r.headers["content-disposition"]
    assert "a.pdf" in r.content.decode("utf-8-sig")

    r = await client.get(f"/uploads/{upload_id}/report/download")
    wb = load_workbook(io.BytesIO(r.content))
    assert wb["Contas"]["B2"].value == "a.pdf"

    assert (await client.get(f"/uploads/{upload_id}/report/download", params={"format": "pdf"})).status_code == 422
    assert (await client.get("/uploads/999/report")).status_code == 404


async def test_bill_result_and_reprocess(client, tracker, lifecycle):
    batch = await tracker.create_batch("manual.zip", 2)
    first = await lifecycle.create_pending_bill(batch.id, "a.pdf")
    second = await lifecycle.create_pending_bill(batch.id, "b.png")

    r = await client.post(f"/bills/{first.id}/result", json={
        "total_amount": "200.00", "energy_consumption": "300", "bill_date": "2024-01-02",
    })
    assert r.status_code == 200
    assert r.json()["extraction_status"] == "success"
    assert Decimal(r.json()["corrected_amount"]) == Decimal("200.00")

    r = await client.post(f"/bills/{second.id}/result", json={"error_message": "Image text is unreadable"})
    assert r.json()["extraction_status"] == "error"

    r = await client.post(f"/bills/{second.id}/result", json={"error_message": "x", "total_amount": "1"})
    assert r.status_code == 422

    r = await client.post(f"/bills/{second.id}/process", files={"file": ("b.png", b"OCR_AMOUNT", "image/png")})
    assert r.status_code == 200
    assert Decimal(r.json()["total_amount"]) == Decimal("98.76")

    status = (await client.get(f"/uploads/{batch.id}")).json()["upload"]
    assert (status["processed_files"], status["failed_files"], status["status"]) == (2, 1, "completed")

    assert (await client.get(f"/bills/{first.id}")).json()["filename"] == "a.pdf"
    assert (await client.get("/bills/9999")).status_code == 404
    bill = await ElectricityBill.get(id=second.id)
    assert bill.extraction_status == ExtractionStatus.SUCCESS


async def test_selic_endpoints(client, store):
    assert (await client.get("/selic-rates/latest")).status_code == 404
    await store.insert(date(2023, 1, 1), Decimal("0.01"))
    await store.insert(date(2023, 2, 1), Decimal("0.01"))

    rates = (await client.get("/selic-rates")).json()
    assert [r["month"] for r in rates] == ["2023-01-01", "2023-02-01"]
    assert (await client.get("/selic-rates/latest")).json()["month"] == "2023-02-01"

    r = await client.post("/corrections", json={
        "principal": "1000", "origin_date": "2023-01-01", "as_of_date": "2023-03-01",
    })
    assert r.status_code == 200
    body = r.json()
    assert Decimal(body["corrected_amount"]) == Decimal("1020.10")
    assert body["months"] == 2

    r = await client.post("/corrections", json={"principal": "-5", "origin_date": "2023-01-01"})
    assert r.status_code == 422


async def test_selic_reload_requires_admin(client, user, tmp_path, monkeypatch):
    p = tmp_path / "selic.csv"
    p.write_text("date,rate\n2023-01-01,0.0112\n2023-02-01,bad\n", encoding="utf-8")
    monkeypatch.setattr(config, "SELIC_CSV_PATH", str(p))

    assert (await client.post("/selic-rates/load")).status_code == 403

    user.is_admin = True
    await user.save()
    r = await client.post("/selic-rates/load")
    assert r.status_code == 200
    assert r.json() == {"loaded": 1, "skipped": 0, "errors": 1}


async def test_upload_with_overlong_entry_name_stores_nothing(client):
    r = await _upload(client, {"a.pdf": b"", "x" * 300 + ".pdf": b""})
    assert r.status_code == 400
    listing = await client.get("/uploads")
    assert listing.json() == []
    assert listing.headers["Content-Range"] == "items 0-0/0"


async def test_upload_over_size_limit(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_BUNDLE_BYTES", 64)
    r = await _upload(client, {"a.pdf": b"x" * 500})
    assert r.status_code == 413


async def test_out_of_range_amounts_are_rejected(client, tracker, lifecycle):
    batch = await tracker.create_batch("manual.zip", 1)
    bill = await lifecycle.create_pending_bill(batch.id, "a.pdf")

    r = await client.post(f"/bills/{bill.id}/result", json={
        "total_amount": "1e30", "energy_consumption": "10", "bill_date": "2023-08-15",
    })
    assert r.status_code == 422
    assert (await client.get(f"/bills/{bill.id}")).json()["extraction_status"] == "pending"

    r = await client.post("/corrections", json={"principal": "1e27", "origin_date": "2023-01-01"})
    assert r.status_code == 422
