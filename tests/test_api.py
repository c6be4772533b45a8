"""
Ledger Engine - API Integration Tests

Integration tests for the accounting REST endpoints.
"""

import uuid

import pytest
from httpx import AsyncClient

from ledger_engine.config import get_settings
from ledger_engine.routers.accounting import router
from tests.helpers import create_and_post, pk

API = f"/api/{get_settings().api_version}/accounting"


@pytest.fixture
def headers(tenant_id):
    return {"X-Tenant-ID": str(tenant_id)}


def entry_payload(debit_account, credit_account, amount="100.00", entry_date="2026-03-15"):
    return {
        "entry_date": entry_date,
        "description": "Office supplies",
        "lines": [
            {"account_id": str(debit_account), "debit_amount": amount},
            {"account_id": str(credit_account), "credit_amount": amount},
        ],
    }


class TestHealthEndpoint:
    """Test health check endpoint."""
    
    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestRouterPrefix:
    
    def test_prefix_follows_configured_api_version(self):
        assert router.prefix == API
        assert all(route.path.startswith(API) for route in router.routes)


class TestTenantHeader:
    
    @pytest.mark.asyncio
    async def test_missing_tenant_header(self, client: AsyncClient):
        response = await client.get(f"{API}/accounts")
        
        assert response.status_code == 422
    
    @pytest.mark.asyncio
    async def test_malformed_tenant_header(self, client: AsyncClient):
        response = await client.get(f"{API}/accounts", headers={"X-Tenant-ID": "not-a-uuid"})
        
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestAccountsAPI:
    
    @pytest.mark.asyncio
    async def test_create_and_list_accounts(self, client: AsyncClient, headers):
        response = await client.post(
            f"{API}/accounts",
            json={"code": "1010", "name": "Petty Cash", "category": "asset"},
            headers=headers,
        )
        
        assert response.status_code == 201
        data = response.json()
        assert data["normal_balance"] == "debit"
        assert float(data["current_balance"]) == 0
        
        duplicate = await client.post(
            f"{API}/accounts",
            json={"code": "1010", "name": "Petty Cash again", "category": "asset"},
            headers=headers,
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "DUPLICATE_ENTRY"
        
        listed = await client.get(f"{API}/accounts", headers=headers)
        assert [a["code"] for a in listed.json()] == ["1010"]
    
    @pytest.mark.asyncio
    async def test_unknown_account(self, client: AsyncClient, headers):
        response = await client.get(f"{API}/accounts/{uuid.uuid4()}", headers=headers)
        
        assert response.status_code == 404
    
    @pytest.mark.asyncio
    async def test_lookup_by_code(self, client: AsyncClient, headers, accounts):
        found = await client.get(f"{API}/accounts/by-code/4000", headers=headers)
        missing = await client.get(f"{API}/accounts/by-code/9999", headers=headers)
        
        assert found.status_code == 200
        assert found.json()["id"] == str(pk(accounts["4000"]))
        assert missing.status_code == 404
    
    @pytest.mark.asyncio
    async def test_update_account(self, client: AsyncClient, headers, accounts, journal_service, tenant_id):
        await create_and_post(journal_service, tenant_id, [(accounts["1000"], "40", "0"), (accounts["4000"], "0", "40")])
        
        renamed = await client.put(
            f"{API}/accounts/{pk(accounts['5000'])}", json={"name": "Office Rent"}, headers=headers,
        )
        assert renamed.status_code == 200
        assert renamed.json()["name"] == "Office Rent"
        
        deactivated = await client.put(
            f"{API}/accounts/{pk(accounts['5000'])}", json={"is_active": False}, headers=headers,
        )
        assert deactivated.status_code == 200
        assert deactivated.json()["is_active"] is False
        
        refused = await client.put(
            f"{API}/accounts/{pk(accounts['1000'])}", json={"is_active": False}, headers=headers,
        )
        assert refused.status_code == 409
        assert refused.json()["error"]["code"] == "RESOURCE_CONFLICT"


class TestJournalEntriesAPI:
    """End-to-end journal entry lifecycle over HTTP."""
    
    @pytest.mark.asyncio
    async def test_create_post_void(self, client: AsyncClient, headers, accounts, fiscal_year_2026):
        cash, sales = pk(accounts["1000"]), pk(accounts["4000"])
        
        created = await client.post(f"{API}/journal-entries", json=entry_payload(cash, sales), headers=headers)
        assert created.status_code == 201
        entry = created.json()
        assert entry["status"] == "draft"
        assert len(entry["lines"]) == 2
        
        posted = await client.post(f"{API}/journal-entries/{entry['id']}/post", headers=headers)
        assert posted.status_code == 200
        assert posted.json()["status"] == "posted"
        
        account = await client.get(f"{API}/accounts/{cash}", headers=headers)
        assert float(account.json()["current_balance"]) == 100.0
        
        replay = await client.post(f"{API}/journal-entries/{entry['id']}/post", headers=headers)
        assert replay.status_code == 409
        assert replay.json()["error"]["code"] == "INVALID_STATE"
        
        voided = await client.post(
            f"{API}/journal-entries/{entry['id']}/void",
            json={"reason": "Entered twice"},
            headers=headers,
        )
        assert voided.status_code == 200
        assert voided.json()["status"] == "voided"
        assert voided.json()["voided_reason"] == "Entered twice"
        assert voided.json()["description"] == "Office supplies"
        
        account = await client.get(f"{API}/accounts/{cash}", headers=headers)
        assert float(account.json()["current_balance"]) == 0.0
    
    @pytest.mark.asyncio
    async def test_unbalanced_entry_lists_every_error(self, client: AsyncClient, headers, accounts):
        payload = entry_payload(pk(accounts["1000"]), pk(accounts["1900"]))
        payload["lines"][1]["credit_amount"] = "90.00"
        
        response = await client.post(f"{API}/journal-entries", json=payload, headers=headers)
        
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert len(error["details"]["errors"]) == 2
    
    @pytest.mark.asyncio
    async def test_payload_shape_checked_before_core(self, client: AsyncClient, headers, accounts):
        payload = entry_payload(pk(accounts["1000"]), pk(accounts["4000"]))
        payload["lines"] = payload["lines"][:1]
        payload["currency"] = "RUPEE"
        
        response = await client.post(f"{API}/journal-entries", json=payload, headers=headers)
        
        assert response.status_code == 422
        fields = {e["field"] for e in response.json()["error"]["details"]["errors"]}
        assert "body.lines" in fields
        assert "body.currency" in fields
    
    @pytest.mark.asyncio
    async def test_validate_endpoint_writes_nothing(self, client: AsyncClient, headers, accounts):
        payload = entry_payload(pk(accounts["1000"]), pk(accounts["4000"]))
        payload["lines"][0]["debit_amount"] = "99.00"
        
        response = await client.post(f"{API}/journal-entries/validate", json=payload, headers=headers)
        
        assert response.status_code == 200
        report = response.json()
        assert report["valid"] is False
        assert any("not balanced" in error for error in report["errors"])
        
        listed = await client.get(f"{API}/journal-entries", headers=headers)
        assert listed.json() == []
    
    @pytest.mark.asyncio
    async def test_update_and_delete_draft(self, client: AsyncClient, headers, accounts):
        cash, sales, services = pk(accounts["1000"]), pk(accounts["4000"]), pk(accounts["4100"])
        created = await client.post(f"{API}/journal-entries", json=entry_payload(cash, sales), headers=headers)
        entry_id = created.json()["id"]
        
        updated = await client.put(
            f"{API}/journal-entries/{entry_id}",
            json={"lines": entry_payload(cash, services, amount="55.00")["lines"]},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["total_debit"] in ("55.00", "55.0", "55")
        
        deleted = await client.delete(f"{API}/journal-entries/{entry_id}", headers=headers)
        assert deleted.status_code == 204
        
        missing = await client.get(f"{API}/journal-entries/{entry_id}", headers=headers)
        assert missing.status_code == 404
    
    @pytest.mark.asyncio
    async def test_post_into_closed_period(self, client: AsyncClient, headers, accounts, fiscal_year_2026):
        march_id = next(p.id for p in fiscal_year_2026.periods if p.name == "March 2026")
        created = await client.post(
            f"{API}/journal-entries",
            json=entry_payload(pk(accounts["1000"]), pk(accounts["4000"])),
            headers=headers,
        )
        
        closed = await client.post(f"{API}/fiscal-periods/{march_id}/close", json={"force": True}, headers=headers)
        assert closed.status_code == 200
        assert closed.json()["status"] == "closed"
        
        posted = await client.post(f"{API}/journal-entries/{created.json()['id']}/post", headers=headers)
        assert posted.status_code == 409
        assert posted.json()["error"]["code"] == "PERIOD_CLOSED"


class TestFiscalYearAPI:
    
    @pytest.mark.asyncio
    async def test_year_end_close(self, client: AsyncClient, headers, accounts):
        created = await client.post(
            f"{API}/fiscal-years",
            json={"name": "FY2026", "start_date": "2026-01-01", "end_date": "2026-12-31"},
            headers=headers,
        )
        assert created.status_code == 201
        year = created.json()
        assert len(year["periods"]) == 12
        
        cash, sales, rent = pk(accounts["1000"]), pk(accounts["4000"]), pk(accounts["5000"])
        for debit, credit, amount in ((cash, sales, "500.00"), (rent, cash, "200.00")):
            entry = await client.post(
                f"{API}/journal-entries", json=entry_payload(debit, credit, amount=amount), headers=headers,
            )
            await client.post(f"{API}/journal-entries/{entry.json()['id']}/post", headers=headers)
        
        closed = await client.post(f"{API}/fiscal-years/{year['id']}/close", headers=headers)
        assert closed.status_code == 200
        assert float(closed.json()["net_income"]) == 300.0
        
        again = await client.post(f"{API}/fiscal-years/{year['id']}/close", headers=headers)
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ALREADY_CLOSED"
        
        refreshed = await client.get(f"{API}/fiscal-years/{year['id']}", headers=headers)
        assert refreshed.json()["is_closed"] is True
        
        reconciled = await client.post(f"{API}/accounts/reconcile", headers=headers)
        assert reconciled.status_code == 200
        assert reconciled.json()["applied"] is False
    
    @pytest.mark.asyncio
    async def test_current_year_period_and_update(self, client: AsyncClient, headers, accounts, fiscal_year_2026):
        year_id = str(fiscal_year_2026.id)
        
        current = await client.get(f"{API}/fiscal-years/current", params={"on_date": "2026-05-20"}, headers=headers)
        assert current.status_code == 200
        assert current.json()["id"] == year_id
        
        period = await client.get(f"{API}/fiscal-periods/current", params={"on_date": "2026-05-20"}, headers=headers)
        assert period.status_code == 200
        assert period.json()["name"] == "May 2026"
        
        outside = await client.get(f"{API}/fiscal-periods/current", params={"on_date": "2030-01-01"}, headers=headers)
        assert outside.status_code == 404
        
        renamed = await client.put(f"{API}/fiscal-years/{year_id}", json={"name": "FY 2026"}, headers=headers)
        assert renamed.status_code == 200
        assert renamed.json()["name"] == "FY 2026"
        
        await client.post(f"{API}/fiscal-years/{year_id}/close", headers=headers)
        frozen = await client.put(f"{API}/fiscal-years/{year_id}", json={"name": "Reopened"}, headers=headers)
        assert frozen.status_code == 409
        assert frozen.json()["error"]["code"] == "ALREADY_CLOSED"
