"""
Workflow blueprint tests — /api/v1.

Identity comes from X-User-* headers; every workflow error is rendered as
{"error", "code", "retryable", "details"} with its HTTP status.
"""

import pytest

BASE = "/api/v1"

ORG = {
    "X-User-Id": "org-user-1",
    "X-User-Role": "organization",
    "X-User-Name": "Olivia Org",
    "X-Organization-Id": "org-1",
}
BUYER = {"X-User-Id": "buyer-1", "X-User-Role": "buyer", "X-User-Name": "Bruno Buyer"}
OTHER_BUYER = {"X-User-Id": "buyer-2", "X-User-Role": "buyer"}

DOC_PAYLOAD = {
    "document_type": "boleto_reserva",
    "file_url": "https://files.example.com/boleto.pdf",
    "file_name": "boleto.pdf",
    "file_size": 1024,
    "mime_type": "application/pdf",
}


@pytest.fixture()
def op(client):
    res = client.post(
        f"{BASE}/operations",
        json={"organization_id": "org-1", "units": [{"unit_id": "U-1", "price": 100000}]},
        headers=BUYER,
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _start(client, op_id):
    return client.post(f"{BASE}/operations/{op_id}/steps/start-next", headers=ORG)


def _upload(client, op_id, step_id, headers=BUYER, **overrides):
    return client.post(
        f"{BASE}/operations/{op_id}/steps/{step_id}/documents",
        json={**DOC_PAYLOAD, **overrides},
        headers=headers,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Identity
# ═════════════════════════════════════════════════════════════════════════════


class TestIdentity:
    def test_missing_identity(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_unknown_role(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}", headers={"X-User-Id": "x", "X-User-Role": "admin"})
        assert res.status_code == 401

    def test_organization_without_tenant(self, client, op):
        headers = {k: v for k, v in ORG.items() if k != "X-Organization-Id"}
        res = client.get(f"{BASE}/operations/{op['id']}", headers=headers)
        assert res.status_code == 401

    def test_other_organization_sees_not_found(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}", headers={**ORG, "X-Organization-Id": "org-2"})
        assert res.status_code == 404

    def test_buyer_cannot_advance(self, client, op):
        res = client.post(f"{BASE}/operations/{op['id']}/steps/start-next", headers=BUYER)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_other_buyer_sees_not_found(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}", headers=OTHER_BUYER)
        assert res.status_code == 404

    def test_over_long_user_id(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}", headers={**BUYER, "X-User-Id": "b" * 65})
        assert res.status_code == 401



# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════


class TestOperations:
    def test_create(self, op):
        assert op["status"] == "not_started"
        assert op["buyer_id"] == "buyer-1"
        assert op["total_amount"] == 100000.0
        assert len(op["steps"]) == 4
        assert op["current_step_id"] is None

    def test_create_by_organization(self, client):
        res = client.post(
            f"{BASE}/operations",
            json={"buyer_id": "buyer-55", "units": [{"unit_id": "U-9", "price": 5}], "step_names": ["A", "B"]},
            headers=ORG,
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["organization_id"] == "org-1"
        assert [s["step_name"] for s in body["steps"]] == ["A", "B"]

    def test_create_missing_org(self, client):
        res = client.post(f"{BASE}/operations", json={"units": [{"unit_id": "U", "price": 1}]}, headers=BUYER)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_conflict(self, client, op):
        res = client.post(
            f"{BASE}/operations",
            json={"organization_id": "org-1", "units": [{"unit_id": "U-2", "price": 1}]},
            headers=BUYER,
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_get_includes_readiness(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}", headers=BUYER)
        assert res.status_code == 200
        body = res.get_json()
        assert body["readiness"]["can_start_next"] is True

    def test_cancel(self, client, op):
        res = client.post(f"{BASE}/operations/{op['id']}/cancel", json={"reason": "Withdrawn"}, headers=ORG)
        assert res.status_code == 200
        assert res.get_json()["status"] == "cancelled"

        res = _start(client, op["id"])
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"

    def test_cancel_without_reason(self, client, op):
        res = client.post(f"{BASE}/operations/{op['id']}/cancel", json={}, headers=ORG)
        assert res.status_code == 422

    def test_cancel_non_string_reason(self, client, op):
        res = client.post(f"{BASE}/operations/{op['id']}/cancel", json={"reason": 3}, headers=ORG)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"reason": "must be a string"}

    def test_create_non_string_currency(self, client):
        res = client.post(
            f"{BASE}/operations",
            json={"organization_id": "org-1", "units": [{"unit_id": "U", "price": 1}], "currency": 840},
            headers=BUYER,
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_create_with_array_body(self, client):
        res = client.post(f"{BASE}/operations", json=[{"unit_id": "U", "price": 1}], headers=BUYER)
        assert res.status_code == 400
        assert res.get_json()["details"] == {"organization_id": "required"}



# ═════════════════════════════════════════════════════════════════════════════
# Steps & documents
# ═════════════════════════════════════════════════════════════════════════════


class TestStepFlow:
    def test_walkthrough(self, client, op):
        res = _start(client, op["id"])
        assert res.status_code == 200
        step = res.get_json()
        assert step["status"] == "in_progress"

        res = _upload(client, op["id"], step["id"])
        assert res.status_code == 201
        doc = res.get_json()
        assert doc["status"] == "uploaded"
        assert doc["uploader_role"] == "buyer"

        res = _upload(client, op["id"], step["id"])
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_DOCUMENT_PENDING"
        assert body["retryable"] is False

        res = client.post(f"{BASE}/operations/{op['id']}/steps/complete-current", headers=ORG)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_DOCUMENTS_NOT_READY"
        assert res.get_json()["details"]["outstanding"] == 1

        res = client.post(f"{BASE}/documents/{doc['id']}/review", json={"decision": "validated"}, headers=ORG)
        assert res.status_code == 200
        assert res.get_json()["reviewed_by"] == "org-user-1"

        res = client.post(f"{BASE}/operations/{op['id']}/steps/complete-current", headers=ORG)
        assert res.status_code == 200
        assert res.get_json()["status"] == "completed"

        res = client.get(f"{BASE}/operations/{op['id']}/steps/{step['id']}/documents", headers=BUYER)
        assert [d["id"] for d in res.get_json()] == [doc["id"]]

    def test_reject_requires_notes(self, client, op):
        step = _start(client, op["id"]).get_json()
        doc = _upload(client, op["id"], step["id"]).get_json()
        res = client.post(f"{BASE}/documents/{doc['id']}/review", json={"decision": "rejected"}, headers=ORG)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"notes": "required"}

    def test_buyer_cannot_review(self, client, op):
        step = _start(client, op["id"]).get_json()
        doc = _upload(client, op["id"], step["id"]).get_json()
        res = client.post(f"{BASE}/documents/{doc['id']}/review", json={"decision": "validated"}, headers=BUYER)
        assert res.status_code == 403

    def test_upload_to_pending_step(self, client, op):
        pending = op["steps"][1]
        _start(client, op["id"])
        res = _upload(client, op["id"], pending["id"])
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_STEP_NOT_ACTIVE"

    def test_upload_bad_file_reference(self, client, op):
        step = _start(client, op["id"]).get_json()
        res = _upload(client, op["id"], step["id"], file_url="")
        assert res.status_code == 422
        assert "file_url" in res.get_json()["details"]

    def test_upload_without_type(self, client, op):
        step = _start(client, op["id"]).get_json()
        res = _upload(client, op["id"], step["id"], document_type="")
        assert res.status_code == 400

    def test_upload_non_string_type(self, client, op):
        step = _start(client, op["id"]).get_json()
        res = _upload(client, op["id"], step["id"], document_type=5)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"document_type": "must be a string"}

    def test_upload_title_too_long(self, client, op):
        step = _start(client, op["id"]).get_json()
        res = _upload(client, op["id"], step["id"], title="t" * 256)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"title": "too_long"}

        res = _upload(client, op["id"], step["id"], title="Signed reservation")
        assert res.status_code == 201

    def test_reject_with_non_string_notes(self, client, op):
        step = _start(client, op["id"]).get_json()
        doc = _upload(client, op["id"], step["id"]).get_json()
        res = client.post(
            f"{BASE}/documents/{doc['id']}/review", json={"decision": "rejected", "notes": 42}, headers=ORG,
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"notes": "must be a string"}

        res = client.post(f"{BASE}/documents/{doc['id']}/review", json={"decision": ["validated"]}, headers=ORG)
        assert res.status_code == 422


    def test_start_twice(self, client, op):
        _start(client, op["id"])
        res = _start(client, op["id"])
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_OUT_OF_ORDER_TRANSITION"

    def test_unknown_step(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}/steps/9999/documents", headers=ORG)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Comments & audit
# ═════════════════════════════════════════════════════════════════════════════


class TestComments:
    def test_internal_hidden_from_buyer(self, client, op):
        step_id = op["steps"][0]["id"]
        url = f"{BASE}/operations/{op['id']}/steps/{step_id}/comments"

        res = client.post(url, json={"content": "Check income certificate", "is_internal": True}, headers=ORG)
        assert res.status_code == 201
        assert res.get_json()["author_name"] == "Olivia Org"
        res = client.post(url, json={"content": "Sent it", "is_internal": True}, headers=BUYER)
        assert res.status_code == 201
        assert res.get_json()["is_internal"] is False

        assert len(client.get(url, headers=ORG).get_json()) == 2
        buyer_view = client.get(url, headers=BUYER).get_json()
        assert [c["content"] for c in buyer_view] == ["Sent it"]

    def test_blank_comment(self, client, op):
        step_id = op["steps"][0]["id"]
        res = client.post(
            f"{BASE}/operations/{op['id']}/steps/{step_id}/comments", json={"content": "  "}, headers=BUYER,
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_EMPTY_CONTENT"

    def test_non_string_content(self, client, op):
        step_id = op["steps"][0]["id"]
        url = f"{BASE}/operations/{op['id']}/steps/{step_id}/comments"
        res = client.post(url, json={"content": 123}, headers=BUYER)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"content": "must be a string"}
        assert client.get(url, headers=BUYER).get_json() == []

    def test_over_long_author_name(self, client, op):
        step_id = op["steps"][0]["id"]
        res = client.post(
            f"{BASE}/operations/{op['id']}/steps/{step_id}/comments",
            json={"content": "Hello"},
            headers={**BUYER, "X-User-Name": "n" * 201},
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"author_name": "too_long"}



class TestAudit:
    def test_org_reads_trail(self, client, op):
        _start(client, op["id"])
        res = client.get(f"{BASE}/operations/{op['id']}/audit", headers=ORG)
        assert res.status_code == 200
        assert [r["action"] for r in res.get_json()] == ["operation.create", "step.start"]

    def test_buyer_forbidden(self, client, op):
        res = client.get(f"{BASE}/operations/{op['id']}/audit", headers=BUYER)
        assert res.status_code == 403

    @pytest.mark.parametrize("limit", ["-5", "0"])
    def test_non_positive_limit(self, client, op, limit):
        res = client.get(f"{BASE}/operations/{op['id']}/audit?limit={limit}", headers=ORG)
        assert res.status_code == 200
        assert [r["action"] for r in res.get_json()] == ["operation.create"]



class TestHealth:
    def test_health(self, client):
        assert client.get(f"{BASE}/health").get_json()["status"] == "ok"
        assert client.get(f"{BASE}/health/ready").status_code == 200
        res = client.get(f"{BASE}/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"
        assert res.get_json()["checks"]["schema"] == {"status": "ok"}
        assert "X-Request-ID" in res.headers
