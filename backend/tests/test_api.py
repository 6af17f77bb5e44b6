"""Tests for API endpoints."""

from fastapi.testclient import TestClient

from app.schemas.records import SessionState

from conftest import DEFAULT_CODE, INDIVIDUAL_REF

DISPATCH = {
    "envelope_ref": "ENV-2001",
    "customer_ref": INDIVIDUAL_REF,
    "documents": [
        {"document_id": "doc-1", "title": "Policy schedule"},
        {"document_id": "doc-2", "title": "Terms and conditions"},
    ],
    "consents": [{"consent_id": "consent-terms", "text": "I accept the terms", "required": True}],
}


def _dispatch(client: TestClient, headers: dict) -> dict:
    response = client.post("/api/envelopes/dispatch", json=DISPATCH, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestDispatchEndpoint:
    def test_dispatch_returns_signing_link(self, test_client: TestClient, internal_headers: dict) -> None:
        data = _dispatch(test_client, internal_headers)

        assert data["state"] == "UNVERIFIED"
        assert data["signing_url"].endswith(f"/sign/{data['token']}")
        assert len(data["short_code"]) == 8

    def test_dispatch_requires_internal_key(self, test_client: TestClient) -> None:
        response = test_client.post("/api/envelopes/dispatch", json=DISPATCH, headers={"x-api-key": "wrong"})
        assert response.status_code == 401

    def test_unknown_customer(self, test_client: TestClient, internal_headers: dict) -> None:
        payload = {**DISPATCH, "customer_ref": "CUST-NOPE"}
        response = test_client.post("/api/envelopes/dispatch", json=payload, headers=internal_headers)
        assert response.status_code == 422
        assert response.json()["error_code"] == "UNKNOWN_CUSTOMER"


class TestSigningEndpoints:
    def test_unknown_and_expired_links_look_the_same(
        self, test_client: TestClient, internal_headers: dict, clock,
    ) -> None:
        unknown = test_client.get("/api/signing/not-a-real-token")

        token = _dispatch(test_client, internal_headers)["token"]
        clock.advance(hours=73)
        expired = test_client.get(f"/api/signing/{token}")

        assert unknown.status_code == expired.status_code == 404
        assert unknown.json() == expired.json() == {
            "detail": "Invalid or expired signing link",
            "error_code": "EXPIRED",
        }

    def test_session_view(self, test_client: TestClient, internal_headers: dict) -> None:
        token = _dispatch(test_client, internal_headers)["token"]
        data = test_client.get(f"/api/signing/{token}").json()

        assert data["state"] == "UNVERIFIED"
        assert data["contact"]["email"] == "jan●●●●●@example.com"
        assert [d["document_id"] for d in data["documents"]] == ["doc-1", "doc-2"]
        assert data["ready_for_signature"] is False

    def test_step_out_of_order_is_rejected(self, test_client: TestClient, internal_headers: dict) -> None:
        token = _dispatch(test_client, internal_headers)["token"]
        response = test_client.post(f"/api/signing/{token}/documents/doc-1/confirm")

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_STATE"

    def test_malformed_identity_details(self, test_client: TestClient, internal_headers: dict) -> None:
        token = _dispatch(test_client, internal_headers)["token"]
        response = test_client.post(
            f"/api/signing/{token}/verify-identity",
            json={"method": "MANUAL", "national_id": "AB123456C"},
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_FAILED"

    def test_full_signing_over_http(self, test_client: TestClient, internal_headers: dict, engine) -> None:
        dispatched = _dispatch(test_client, internal_headers)
        base = f"/api/signing/{dispatched['token']}"

        identity = test_client.post(
            f"{base}/verify-identity",
            json={"method": "MANUAL", "date_of_birth": "12/04/1985", "national_id": "ab123456c"},
        ).json()
        assert identity["success"] is True
        assert identity["state"] == "CONTACT_PENDING"

        otp = test_client.post(f"{base}/contact/otp", json={"channel": "EMAIL"}).json()
        assert otp["masked_destination"] == "jan●●●●●@example.com"
        assert otp["remaining_attempts"] == 3

        miss = test_client.post(f"{base}/contact/otp/verify", json={"code": "000000"}).json()
        assert miss["status"] == "INVALID"
        assert miss["remaining_attempts"] == 2

        hit = test_client.post(f"{base}/contact/otp/verify", json={"code": DEFAULT_CODE}).json()
        assert hit["state"] == "REVIEW_PENDING"

        for document_id in ("doc-1", "doc-2"):
            assert test_client.post(f"{base}/documents/{document_id}/confirm").status_code == 200
        review = test_client.put(f"{base}/consents/consent-terms", json={"accepted": True}).json()
        assert review["ready_for_signature"] is True

        signature = test_client.post(
            f"{base}/signature", json={"method": "DRAWN", "artifact_ref": "signatures/ENV-2001/drawn.png"},
        )
        assert signature.status_code == 200
        assert test_client.get(f"{base}/readiness").json()["missing"] == []

        assert test_client.post(f"{base}/submit").json()["state"] == "SIGNING_PENDING"
        assert test_client.post(f"{base}/signing/otp", json={"channel": "SMS"}).json()["state"] == "SIGNING_CHALLENGED"
        assert test_client.post(f"{base}/signing/otp/verify", json={"code": DEFAULT_CODE}).json()["state"] == "FINALIZING"

        completed = test_client.post(f"{base}/complete")
        assert completed.status_code == 200
        body = completed.json()
        assert body["state"] == "COMPLETED"
        assert body["verification_url"].endswith(f"/api/verify/{dispatched['short_code']}")

        replay = test_client.post(f"{base}/complete").json()
        assert replay["document_hash"] == body["document_hash"]
        assert engine.store.get(dispatched["token"]).state == SessionState.COMPLETED

        public = test_client.get(f"/api/verify/{dispatched['short_code']}")
        assert public.status_code == 200
        assert public.json()["document_hash"] == body["document_hash"]

        evidence = test_client.get(
            f"/api/admin/sessions/{dispatched['token']}/evidence", headers=internal_headers,
        ).json()
        assert evidence["chain"]["valid"] is True
        assert evidence["evidence_record"]["otp_channel"] == "SMS"


class TestAdminEndpoints:
    def test_admin_requires_key(self, test_client: TestClient) -> None:
        assert test_client.post("/api/admin/purge", headers={"x-api-key": "wrong"}).status_code == 401

    def test_purge(self, test_client: TestClient, internal_headers: dict, clock) -> None:
        _dispatch(test_client, internal_headers)
        clock.advance(hours=73)

        response = test_client.post("/api/admin/purge", headers=internal_headers)
        assert response.status_code == 200
        assert response.json() == {"expired": 1, "purged": 0}


class TestApiSchema:
    def test_error_shape_is_documented(self, test_client: TestClient) -> None:
        schema = test_client.get("/openapi.json").json()
        assert "ErrorResponse" in schema["components"]["schemas"]

        responses = schema["paths"]["/api/signing/{token}"]["get"]["responses"]
        assert responses["404"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
