"""End-to-end HTTP tests for buyer, tag and import/export routes."""

from __future__ import annotations

import asyncio
import csv
import io
from datetime import datetime
from unittest.mock import patch

import pytest

from conftest import buyer_payload


@pytest.fixture
def headers(auth_headers):
    return auth_headers("user-1")


def _create(client, headers, **overrides) -> dict:
    resp = client.post("/buyers", json=buyer_payload(**overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCreateAndRead:
    def test_create_returns_201_with_server_fields(self, client, headers) -> None:
        body = _create(client, headers)

        assert body["owner_id"] == "user-1"
        assert body["status"] == "New"
        assert body["id"]
        assert body["updated_at"]

    def test_invalid_create_returns_400_with_issues(self, client, headers) -> None:
        payload = buyer_payload(property_type="Villa")
        payload.pop("bhk")

        resp = client.post("/buyers", json=payload, headers=headers)

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_failed"
        assert [i["path"] for i in error["details"]["issues"]] == [["bhk"]]
        assert error["request_id"]

    def test_get_returns_buyer_and_history(self, client, headers) -> None:
        created = _create(client, headers)
        client.put(f"/buyers/{created['id']}", json={"status": "Qualified"}, headers=headers)

        resp = client.get(f"/buyers/{created['id']}", headers=headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["buyer"]["status"] == "Qualified"
        assert body["history"][0]["diff"] == {"status": {"old": "New", "new": "Qualified"}}
        assert body["history"][0]["changed_by"] == "user-1"

    def test_get_other_users_buyer_is_404(self, client, headers, auth_headers) -> None:
        created = _create(client, headers)

        resp = client.get(f"/buyers/{created['id']}", headers=auth_headers("user-2"))

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "buyer_not_found"

    def test_admin_can_read_any_buyer(self, client, headers, auth_headers) -> None:
        created = _create(client, headers)

        resp = client.get(f"/buyers/{created['id']}", headers=auth_headers("admin-1"))

        assert resp.status_code == 200

    def test_admin_role_claim_grants_access(self, client, headers, auth_headers) -> None:
        created = _create(client, headers)

        resp = client.get(
            f"/buyers/{created['id']}",
            headers=auth_headers("ops-9", app_metadata={"role": "admin"}),
        )

        assert resp.status_code == 200


class TestList:
    def test_list_returns_rows_and_total(self, client, headers, auth_headers) -> None:
        for i in range(3):
            _create(client, headers, full_name=f"Lead {i}", city="Mohali" if i else "Panchkula")
        _create(client, auth_headers("user-2"), full_name="Not Mine")

        resp = client.get("/buyers", params={"city": "Mohali", "limit": 1}, headers=headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert len(body["rows"]) == 1

    def test_bad_query_param_is_400(self, client, headers) -> None:
        resp = client.get("/buyers", params={"page": 0}, headers=headers)

        assert resp.status_code == 400
        assert resp.json()["error"]["details"]["issues"][0]["path"] == ["page"]

    def test_unknown_status_filter_is_400(self, client, headers) -> None:
        resp = client.get("/buyers", params={"status": "Closed"}, headers=headers)

        assert resp.status_code == 400


class TestUpdate:
    def test_update_with_current_version(self, client, headers) -> None:
        created = _create(client, headers)

        resp = client.put(
            f"/buyers/{created['id']}",
            json={"status": "Visited", "updatedAt": created["updated_at"]},
            headers=headers,
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "Visited"
        assert datetime.fromisoformat(resp.json()["updated_at"]) > datetime.fromisoformat(created["updated_at"])

    def test_stale_version_is_409(self, client, headers) -> None:
        created = _create(client, headers)
        first = client.put(
            f"/buyers/{created['id']}",
            json={"status": "Visited", "updatedAt": created["updated_at"]},
            headers=headers,
        )
        assert first.status_code == 200

        with patch("buyer_leads.services.buyer_update.settings") as mock_settings:
            mock_settings.app.conflict_tolerance_seconds = 0
            second = client.put(
                f"/buyers/{created['id']}",
                json={"status": "Dropped", "updatedAt": created["updated_at"]},
                headers=headers,
            )

        assert second.status_code == 409
        assert second.json()["error"]["code"] == "stale_version"
        detail = client.get(f"/buyers/{created['id']}", headers=headers).json()
        assert detail["buyer"]["status"] == "Visited"
        assert len(detail["history"]) == 1

    def test_missing_buyer_is_409(self, client, headers) -> None:
        resp = client.put("/buyers/nope", json={"status": "Visited"}, headers=headers)

        assert resp.status_code == 409
        assert resp.json()["error"]["message"] == "Conflict or not found"

    def test_invalid_updated_at_is_400(self, client, headers) -> None:
        created = _create(client, headers)

        resp = client.put(
            f"/buyers/{created['id']}",
            json={"status": "Visited", "updatedAt": "not-a-date"},
            headers=headers,
        )

        assert resp.status_code == 400

    def test_merged_record_violation_is_400(self, client, headers) -> None:
        created = _create(client, headers, property_type="Plot", bhk=None)

        resp = client.put(f"/buyers/{created['id']}", json={"property_type": "Apartment"}, headers=headers)

        assert resp.status_code == 400
        assert resp.json()["error"]["details"]["issues"][0]["path"] == ["bhk"]


class TestDelete:
    def test_delete_then_get_is_404(self, client, headers) -> None:
        created = _create(client, headers)

        resp = client.delete(f"/buyers/{created['id']}", headers=headers)

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert client.get(f"/buyers/{created['id']}", headers=headers).status_code == 404

    def test_delete_missing_is_404(self, client, headers) -> None:
        assert client.delete("/buyers/missing", headers=headers).status_code == 404


class TestRateLimit:
    def test_sixth_create_in_window_is_429(self, client, headers) -> None:
        for _ in range(5):
            _create(client, headers)

        resp = client.post("/buyers", json=buyer_payload(), headers=headers)

        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert int(resp.headers["Retry-After"]) >= 1
        assert resp.headers["X-RateLimit-Limit"] == "5"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_buckets_are_per_user(self, client, headers, auth_headers) -> None:
        for _ in range(5):
            _create(client, headers)

        _create(client, auth_headers("user-2"))

    def test_updates_have_their_own_budget(self, client, headers) -> None:
        created = _create(client, headers)
        path = f"/buyers/{created['id']}"

        statuses = [
            client.put(path, json={"notes": f"call {i}"}, headers=headers).status_code
            for i in range(11)
        ]

        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429

    def test_disabled_rate_limit(self, client, headers) -> None:
        with patch("buyer_leads.core.rate_limit.settings") as mock_settings:
            mock_settings.app.rate_limit_enabled = False
            for _ in range(7):
                _create(client, headers)


class TestTags:
    def test_tags_autocomplete(self, client, headers, auth_headers) -> None:
        _create(client, headers, tags=["hot", "investor"])
        _create(client, auth_headers("user-2"), tags=["hotel-owner"])

        resp = client.get("/tags", params={"q": "HO"}, headers=headers)

        assert resp.status_code == 200
        assert resp.json() == {"tags": ["hot"]}

    def test_tags_limit_clamped(self, client, headers) -> None:
        _create(client, headers, tags=["a", "b", "c"])

        resp = client.get("/tags", params={"limit": 0}, headers=headers)

        assert resp.json() == {"tags": ["a"]}


class TestExport:
    def test_export_is_csv_attachment_with_filters(self, client, headers) -> None:
        _create(client, headers, full_name="Mohali Lead", city="Mohali", notes="likes, commas")
        _create(client, headers, full_name="Other Lead", city="Zirakpur")

        resp = client.get("/export", params={"city": "Mohali"}, headers=headers)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'filename="buyers.csv"' in resp.headers["content-disposition"]
        records = list(csv.DictReader(io.StringIO(resp.text)))
        assert [r["full_name"] for r in records] == ["Mohali Lead"]
        assert records[0]["notes"] == "likes, commas"
        assert records[0]["tags"] == "hot;family"

    def test_export_empty_has_header(self, client, headers) -> None:
        resp = client.get("/export", headers=headers)

        assert resp.text.startswith("id,full_name,")
        assert resp.text.count("\n") == 1

    def test_export_is_capped(self, client, headers) -> None:
        for i in range(3):
            _create(client, headers, full_name=f"Lead {i}")

        with patch("buyer_leads.api.routes.transfer.settings") as mock_settings:
            mock_settings.app.export_max_rows = 2
            resp = client.get("/export", headers=headers)

        assert len(list(csv.DictReader(io.StringIO(resp.text)))) == 2


class TestImport:
    def test_import_zero_rows(self, client, headers) -> None:
        resp = client.post("/import", json={"rows": []}, headers=headers)

        assert resp.status_code == 200
        assert resp.json() == {"inserted": 0}

    def test_import_inserts_all_rows(self, client, headers) -> None:
        rows = [buyer_payload(full_name=f"Imported {i}") for i in range(3)]

        resp = client.post("/import", json={"rows": rows}, headers=headers)

        assert resp.json() == {"inserted": 3}
        assert client.get("/buyers", headers=headers).json()["total"] == 3

    def test_import_over_cap_is_400(self, client, headers) -> None:
        rows = [buyer_payload()] * 201

        resp = client.post("/import", json={"rows": rows}, headers=headers)

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "too_many_rows"
        assert client.get("/buyers", headers=headers).json()["total"] == 0

    def test_one_bad_row_inserts_nothing(self, client, headers) -> None:
        rows = [buyer_payload(), buyer_payload(budget_min=10, budget_max=5)]

        resp = client.post("/import", json={"rows": rows}, headers=headers)

        assert resp.status_code == 400
        assert resp.json()["error"]["details"]["issues"][0]["path"] == [1, "budget_max"]
        assert client.get("/buyers", headers=headers).json()["total"] == 0

    def test_csv_upload_round_trips_export(self, client, headers, auth_headers) -> None:
        _create(client, headers, full_name="Exported Lead", tags=["hot", "nri"])
        exported = client.get("/export", headers=headers).text

        resp = client.post(
            "/import/csv",
            files={"file": ("buyers.csv", exported.encode("utf-8"), "text/csv")},
            headers=auth_headers("user-2"),
        )

        assert resp.status_code == 200, resp.text
        assert resp.json() == {"inserted": 1}
        rows = client.get("/buyers", headers=auth_headers("user-2")).json()["rows"]
        assert rows[0]["full_name"] == "Exported Lead"
        assert rows[0]["owner_id"] == "user-2"
        assert rows[0]["tags"] == ["hot", "nri"]

    def test_csv_upload_inserts_outside_event_loop(self, client, headers) -> None:
        from buyer_leads.api.routes import transfer

        on_loop: list[bool] = []
        real_insert_many = transfer.insert_many

        def recording_insert_many(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                on_loop.append(True)
            except RuntimeError:
                on_loop.append(False)
            return real_insert_many(*args, **kwargs)

        csv_text = "full_name,phone,city,property_type,purpose,timeline,source\nAsha Verma,9876543210,Mohali,Plot,Buy,3-6m,Referral\n"
        with patch("buyer_leads.api.routes.transfer.insert_many", side_effect=recording_insert_many):
            resp = client.post(
                "/import/csv",
                files={"file": ("buyers.csv", csv_text.encode("utf-8"), "text/csv")},
                headers=headers,
            )

        assert resp.status_code == 200, resp.text
        assert resp.json() == {"inserted": 1}
        assert on_loop == [False]

    def test_csv_upload_too_large_is_413(self, client, headers) -> None:
        with patch("buyer_leads.core.file_validation.settings") as mock_settings:
            mock_settings.app.max_upload_size_mb = 0
            resp = client.post(
                "/import/csv",
                files={"file": ("buyers.csv", b"full_name\nAsha\n", "text/csv")},
                headers=headers,
            )

        assert resp.status_code == 413
        assert resp.json()["error"]["code"] == "payload_too_large"

    def test_csv_upload_wrong_type_is_400(self, client, headers) -> None:
        resp = client.post(
            "/import/csv",
            files={"file": ("photo.png", b"\x89PNG", "image/png")},
            headers=headers,
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_file_type"


class TestHealth:
    def test_health(self, client) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_health_db_ok(self, client) -> None:
        assert client.get("/health/db").json() == {"ok": True}

    def test_health_db_down_is_503(self, client) -> None:
        from sqlalchemy.exc import OperationalError

        with patch(
            "buyer_leads.api.routes.health.ping",
            side_effect=OperationalError("SELECT 1", {}, Exception("down")),
        ):
            resp = client.get("/health/db")

        assert resp.status_code == 503
        assert resp.json() == {"ok": False}
