# SPDX-License-Identifier: MIT
"""Tests for duplicate detection and merge endpoints."""

import uuid

import pytest

from crm.database import Contact, Deal, DealContact, Note


@pytest.fixture
def contacts(make_contact):
    survivor = make_contact("Jon", "Smith", "jon@example.com")
    loser = make_contact("Jonathan", "Smith", "jon@example.com")
    return survivor, loser


class TestRequestContext:
    """Every endpoint is tenant-scoped."""

    def test_missing_headers(self, test_client):
        response = test_client.post("/api/duplicates/check/contacts", json={"first_name": "Jon"})
        assert response.status_code == 401

    def test_malformed_tenant(self, test_client, user_id):
        response = test_client.get(
            "/api/duplicates/scan/contacts",
            headers={"X-Tenant-Id": "acme", "X-User-Id": str(user_id)},
        )
        assert response.status_code == 401


class TestCheckEndpoint:
    """Test POST /api/duplicates/check/{entity_type}."""

    def test_returns_matches(self, test_client, auth_headers, contacts):
        _, loser = contacts
        response = test_client.post(
            "/api/duplicates/check/contacts",
            json={"first_name": "Jonathan", "last_name": "Smith", "email": "jon@example.com"},
            headers=auth_headers,
        )
        assert response.status_code == 200

        data = response.json()
        assert len(data) == 2
        assert data[0]["entity_id"] == str(loser.id)
        assert data[0]["score"] == 100
        assert data[0]["primary"] == "Jonathan Smith"
        assert data[0]["score"] >= data[1]["score"]

    def test_exclude_record_being_edited(self, test_client, auth_headers, contacts):
        survivor, loser = contacts
        response = test_client.post(
            "/api/duplicates/check/contacts",
            json={"first_name": "Jon", "last_name": "Smith", "exclude_id": str(survivor.id)},
            headers=auth_headers,
        )
        assert [m["entity_id"] for m in response.json()] == [str(loser.id)]

    def test_empty_when_auto_detection_disabled(self, test_client, auth_headers, contacts):
        test_client.put(
            "/api/duplicate-settings/contacts",
            json={"similarity_threshold": 70, "auto_detection_enabled": False},
            headers=auth_headers,
        )
        response = test_client.post(
            "/api/duplicates/check/contacts",
            json={"first_name": "Jon", "last_name": "Smith"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json() == []

    def test_company_check(self, test_client, auth_headers, make_company):
        company = make_company("Acme Corporation", "https://www.acme.com")
        response = test_client.post(
            "/api/duplicates/check/companies",
            json={"name": "ACME Corp", "website": "acme.com"},
            headers=auth_headers,
        )
        assert [m["entity_id"] for m in response.json()] == [str(company.id)]

    def test_unknown_entity_type(self, test_client, auth_headers):
        response = test_client.post("/api/duplicates/check/deals", json={"name": "x"}, headers=auth_headers)
        assert response.status_code == 400


class TestScanEndpoint:
    """Test GET /api/duplicates/scan/{entity_type}."""

    def test_paginated_pairs(self, test_client, auth_headers, make_contact):
        make_contact("Jon", "Smith", "jon@example.com")
        make_contact("Jonathan", "Smith", "jon@example.com")
        make_contact("Maria", "Garcia", "maria@example.com")
        make_contact("Maria", "Garcia", "maria@example.com")

        response = test_client.get("/api/duplicates/scan/contacts?page=1&page_size=1", headers=auth_headers)
        assert response.status_code == 200

        data = response.json()
        assert data["total_count"] == 2
        assert data["page"] == 1
        assert data["page_size"] == 1
        assert len(data["items"]) == 1
        assert data["items"][0]["score"] == 100
        assert data["items"][0]["record_a"]["primary"] == "Maria Garcia"

        second = test_client.get("/api/duplicates/scan/contacts?page=2&page_size=1", headers=auth_headers).json()
        assert second["total_count"] == 2
        assert second["items"][0]["record_a"]["primary"] == "Jon Smith"

    def test_page_size_limit(self, test_client, auth_headers):
        response = test_client.get("/api/duplicates/scan/contacts?page_size=1000", headers=auth_headers)
        assert response.status_code == 422

    def test_invalid_page(self, test_client, auth_headers):
        response = test_client.get("/api/duplicates/scan/contacts?page=0", headers=auth_headers)
        assert response.status_code == 422


class TestMergePreviewEndpoint:
    """Test GET /api/duplicates/merge-preview/{entity_type}."""

    def test_counts(self, test_client, auth_headers, tenant_id, contacts, add_rows):
        survivor, loser = contacts
        add_rows(Note(tenant_id=tenant_id, entity_type="Contact", entity_id=loser.id, body="n"))

        response = test_client.get(
            f"/api/duplicates/merge-preview/contacts?survivor_id={survivor.id}&loser_id={loser.id}",
            headers=auth_headers,
        )
        assert response.status_code == 200

        data = response.json()
        assert data["counts_by_type"]["notes"] == 1
        assert data["counts_by_type"]["deals"] == 0
        assert data["total_count"] == 1

    def test_missing_id(self, test_client, auth_headers, contacts):
        survivor, _ = contacts
        response = test_client.get(
            f"/api/duplicates/merge-preview/contacts?survivor_id={survivor.id}", headers=auth_headers
        )
        assert response.status_code == 400

    def test_equal_ids(self, test_client, auth_headers, contacts):
        survivor, _ = contacts
        response = test_client.get(
            f"/api/duplicates/merge-preview/contacts?survivor_id={survivor.id}&loser_id={survivor.id}",
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_unknown_record(self, test_client, auth_headers, contacts):
        survivor, _ = contacts
        response = test_client.get(
            f"/api/duplicates/merge-preview/contacts?survivor_id={survivor.id}&loser_id={uuid.uuid4()}",
            headers=auth_headers,
        )
        assert response.status_code == 404


class TestMergeEndpoint:
    """Test POST /api/duplicates/merge/{entity_type}."""

    def test_merge(self, test_client, auth_headers, db_session, tenant_id, contacts, add_rows):
        survivor, loser = contacts
        deals = [Deal(tenant_id=tenant_id, title=f"Deal {i}") for i in range(3)]
        add_rows(*deals)
        add_rows(
            *[DealContact(tenant_id=tenant_id, deal_id=d.id, contact_id=loser.id) for d in deals],
            Note(tenant_id=tenant_id, entity_type="Contact", entity_id=loser.id, body="n"),
        )

        response = test_client.post(
            "/api/duplicates/merge/contacts",
            json={
                "survivor_id": str(survivor.id),
                "loser_id": str(loser.id),
                "field_selections": {"firstName": "Jonathan"},
            },
            headers=auth_headers,
        )
        assert response.status_code == 200

        data = response.json()
        assert data["survivor_id"] == str(survivor.id)
        assert data["transfer_counts"] == {"deals": 3, "notes": 1}
        assert data["merged_at"]

        db_session.expire_all()
        assert db_session.get(Contact, survivor.id).first_name == "Jonathan"
        assert db_session.get(Contact, loser.id).merged_into_id == survivor.id

    def test_second_merge_is_not_found(self, test_client, auth_headers, contacts):
        survivor, loser = contacts
        body = {"survivor_id": str(survivor.id), "loser_id": str(loser.id)}

        assert test_client.post("/api/duplicates/merge/contacts", json=body, headers=auth_headers).status_code == 200
        assert test_client.post("/api/duplicates/merge/contacts", json=body, headers=auth_headers).status_code == 404

    @pytest.mark.parametrize(
        "body",
        [
            {"loser_id": "00000000-0000-0000-0000-000000000001"},
            {"survivor_id": "not-a-uuid", "loser_id": "also-not"},
            {"survivor_id": 1, "loser_id": 2},
        ],
    )
    def test_invalid_ids(self, test_client, auth_headers, body):
        response = test_client.post("/api/duplicates/merge/contacts", json=body, headers=auth_headers)
        assert response.status_code == 400

    def test_null_selections_merge_without_changes(self, test_client, auth_headers, db_session, contacts):
        survivor, loser = contacts
        body = {"survivor_id": str(survivor.id), "loser_id": str(loser.id), "field_selections": None}

        response = test_client.post("/api/duplicates/merge/contacts", json=body, headers=auth_headers)

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.get(Contact, survivor.id).first_name == "Jon"

    @pytest.mark.parametrize("selections", [["first_name", "Jonathan"], "first_name=Jonathan", 42])
    def test_non_object_selections(self, test_client, auth_headers, db_session, contacts, selections):
        survivor, loser = contacts
        body = {"survivor_id": str(survivor.id), "loser_id": str(loser.id), "field_selections": selections}

        response = test_client.post("/api/duplicates/merge/contacts", json=body, headers=auth_headers)

        assert response.status_code == 400
        db_session.expire_all()
        assert db_session.get(Contact, loser.id).merged_into_id is None

    def test_same_ids(self, test_client, auth_headers, contacts):
        survivor, _ = contacts
        body = {"survivor_id": str(survivor.id), "loser_id": str(survivor.id)}
        response = test_client.post("/api/duplicates/merge/contacts", json=body, headers=auth_headers)
        assert response.status_code == 400

    def test_transaction_failure_is_generic(self, test_client, auth_headers, db_session, contacts, mocker):
        survivor, loser = contacts
        mocker.patch(
            "crm.deduplication.relationships.PolymorphicRelationship.transfer",
            side_effect=RuntimeError("disk I/O error on notes table"),
        )

        response = test_client.post(
            "/api/duplicates/merge/contacts",
            json={"survivor_id": str(survivor.id), "loser_id": str(loser.id)},
            headers=auth_headers,
        )

        assert response.status_code == 500
        assert "disk" not in response.json()["detail"]
        db_session.expire_all()
        assert db_session.get(Contact, loser.id).merged_into_id is None


class TestComparisonEndpoint:
    """Test GET /api/duplicates/{entity_type}/{id}/comparison."""

    def test_comparison_after_merge(self, test_client, auth_headers, contacts):
        survivor, loser = contacts
        test_client.post(
            "/api/duplicates/merge/contacts",
            json={"survivor_id": str(survivor.id), "loser_id": str(loser.id)},
            headers=auth_headers,
        )

        response = test_client.get(
            f"/api/duplicates/contacts/{loser.id}/comparison?other_id={survivor.id}", headers=auth_headers
        )
        assert response.status_code == 200

        data = response.json()
        assert data["record_a"]["id"] == str(loser.id)
        assert data["record_a"]["merged_into_id"] == str(survivor.id)
        assert data["record_b"]["id"] == str(survivor.id)
        assert data["record_b"]["full_name"] == "Jon Smith"

    def test_missing_other_id(self, test_client, auth_headers, contacts):
        survivor, _ = contacts
        response = test_client.get(f"/api/duplicates/contacts/{survivor.id}/comparison", headers=auth_headers)
        assert response.status_code == 400

    def test_unknown_record(self, test_client, auth_headers, contacts):
        survivor, _ = contacts
        response = test_client.get(
            f"/api/duplicates/contacts/{survivor.id}/comparison?other_id={uuid.uuid4()}", headers=auth_headers
        )
        assert response.status_code == 404


class TestMergeHistoryEndpoint:
    """Test GET /api/duplicates/{entity_type}/{id}/merge-history."""

    def test_history(self, test_client, auth_headers, user_id, contacts):
        survivor, loser = contacts
        test_client.post(
            "/api/duplicates/merge/contacts",
            json={"survivor_id": str(survivor.id), "loser_id": str(loser.id), "field_selections": {"email": "j@x.io"}},
            headers=auth_headers,
        )

        response = test_client.get(f"/api/duplicates/contacts/{survivor.id}/merge-history", headers=auth_headers)
        assert response.status_code == 200

        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["loser_id"] == str(loser.id)
        assert entries[0]["merged_by_user_id"] == str(user_id)
        assert entries[0]["field_selections"] == {"email": "j@x.io"}
