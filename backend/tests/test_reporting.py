"""
Reports and dashboard figures, computed from sale snapshots.
"""

from datetime import datetime, timedelta

import pytest

from kasir.extensions import db
from kasir.services import reporting_service
from kasir.services.products_service import update_product
from kasir.services.reporting_service import ReportError, growth_percent
from kasir.services.sales_service import CartItemInput, create_sale, delete_sale, get_sale
from kasir.time_utils import utcnow


@pytest.fixture
def shop(petugas_user, customer, make_product):
    """
    This year: a walk-in sale of 2 x Teh (20000) and a member sale of
    1 x Roti (4000 less 10%). Last year: one walk-in Teh.
    """
    teh = make_product(name="Teh", sale_price=10000, cost_price=5000, stock=100)
    roti = make_product(name="Roti", sale_price=4000, cost_price=3000, stock=100)
    last_year = datetime(utcnow().year - 1, 6, 15, 10, 0)

    old = create_sale(user_id=petugas_user.id, items=[CartItemInput(teh.id, 1)],
                      amount_tendered=10000, sold_at=last_year)
    walk_in = create_sale(user_id=petugas_user.id, items=[CartItemInput(teh.id, 2)],
                          amount_tendered=20000)
    member = create_sale(user_id=petugas_user.id, items=[CartItemInput(roti.id, 1)],
                         customer_id=customer.id, amount_tendered=5000)
    return {"teh": teh, "roti": roti, "old": old, "walk_in": walk_in, "member": member}


class TestSalesReport:

    def test_today_by_default(self, shop):
        report = reporting_service.sales_report()

        assert report["pagination"]["total"] == 2
        by_id = {row["id"]: row for row in report["items"]}
        walk_in = by_id[shop["walk_in"].id]
        assert walk_in["customer_name"] == ""
        assert walk_in["profit"] == 10000
        assert walk_in["status"] == "lunas"
        assert by_id[shop["member"].id]["net_total"] == 3600
        assert by_id[shop["member"].id]["profit"] == 1000
        assert report["customers"] == ["Budi"]

    def test_customer_filters(self, shop, customer):
        assert reporting_service.sales_report(customer_id=customer.id)["count"] == 1
        assert reporting_service.sales_report(customer_name="Budi")["count"] == 1

    def test_underpaid_status(self, shop):
        sale = get_sale(shop["member"].id)
        sale.amount_tendered = 1000
        db.session.commit()

        row = next(r for r in reporting_service.sales_report()["items"] if r["id"] == sale.id)
        assert row["outstanding"] == 2600
        assert row["status"] == "kurang_bayar"

    def test_range_includes_last_year(self, shop):
        year = utcnow().year - 1
        report = reporting_service.sales_report(start=datetime(year, 1, 1).date(), end=utcnow().date())
        assert report["pagination"]["total"] == 3

    def test_reversed_range(self, db_session):
        today = utcnow().date()
        with pytest.raises(ReportError):
            reporting_service.sales_report(start=today, end=today - timedelta(days=1))

    def test_deleted_sales_excluded(self, shop, admin_user):
        delete_sale(shop["walk_in"].id, actor_user_id=admin_user.id)
        assert reporting_service.sales_report()["pagination"]["total"] == 1


class TestPerItemReport:

    def test_grouped_and_summarized_across_pages(self, shop):
        report = reporting_service.per_item_report(per_page=1)

        assert [row["product_name"] for row in report["items"]] == ["Teh"]
        assert report["items"][0]["quantity"] == 2
        assert report["pagination"]["total"] == 2
        assert report["summary"] == {
            "total_sales": 24000,
            "total_profit": 11000,
            "total_quantity": 3,
        }

    def test_price_change_does_not_rewrite_history(self, shop):
        update_product(shop["teh"].id, patch={"sale_price": 99999, "cost_price": 1})
        report = reporting_service.per_item_report()
        teh = next(row for row in report["items"] if row["product_name"] == "Teh")
        assert teh["net_total"] == 20000
        assert teh["profit"] == 10000


class TestDashboard:

    @pytest.mark.parametrize("current,previous,expected", [
        (150, 100, 50),
        (50, 100, -50),
        (5, 0, 100),
        (0, 0, 0),
        (1, 3, -67),
        (3, 2, 50),
    ])
    def test_growth_percent(self, current, previous, expected):
        assert growth_percent(current, previous) == expected

    def test_stats_and_growth(self, shop):
        year = utcnow().year
        assert reporting_service.dashboard_stats(year) == {
            "items_sold": 3,
            "transactions": 2,
            "income": 23600,
            "active_customers": 1,
        }
        assert reporting_service.dashboard_growth(year) == {
            "items_sold": 200,
            "transactions": 100,
            "income": 136,
            "active_customers": 100,
        }

    def test_top_products_and_categories(self, shop):
        year = utcnow().year
        top = reporting_service.top_products(year)
        assert [(row["product_name"], row["total"]) for row in top] == [("Teh", 20000), ("Roti", 4000)]
        assert [row["contribution_percent"] for row in top] == [83, 17]
        assert top[0]["average_price"] == 10000

        assert reporting_service.category_breakdown(year) == [{"name": "Minuman", "value": 24000}]

    def test_customers_and_recent_sales(self, shop):
        year = utcnow().year
        assert [(c["name"], c["total"]) for c in reporting_service.top_customers(year)] == [
            ("Umum", 20000),
            ("Budi", 3600),
        ]

        recent = reporting_service.recent_sales(year)
        assert [(r["customer_name"], r["item_count"]) for r in recent] == [("Budi", 1), ("Umum", 2)]

    def test_available_years(self, shop):
        year = utcnow().year
        assert reporting_service.available_years() == [year, year - 1]

    def test_available_years_without_sales(self, db_session):
        assert reporting_service.available_years() == [utcnow().year]

    def test_newest_products(self, shop):
        names = [p["product_name"] for p in reporting_service.newest_products()]
        assert names == ["Roti", "Teh"]


class TestReportRoutes:

    def test_admin_only(self, client, petugas_headers):
        assert client.get("/api/reports/sales", headers=petugas_headers).status_code == 403
        assert client.get("/api/reports/dashboard", headers=petugas_headers).status_code == 403

    def test_sales_report(self, client, admin_headers, shop):
        resp = client.get("/api/reports/sales?customer=Semua", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["pagination"]["total"] == 2

        resp = client.get("/api/reports/sales?customer=Budi", headers=admin_headers)
        assert resp.json["pagination"]["total"] == 1

    def test_bad_dates_are_400(self, client, admin_headers):
        resp = client.get("/api/reports/sales?start_date=2025-02-10&end_date=2025-02-01", headers=admin_headers)
        assert resp.status_code == 400
        resp = client.get("/api/reports/sales/per-item?start_date=10-02-2025", headers=admin_headers)
        assert resp.status_code == 400

    def test_dashboard(self, client, admin_headers, shop):
        resp = client.get("/api/reports/dashboard", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["stats"]["transactions"] == 2
        assert resp.json["recent_sales"][0]["customer_name"] == "Budi"

        resp = client.get(f"/api/reports/dashboard?year={utcnow().year - 1}", headers=admin_headers)
        assert resp.json["stats"]["income"] == 10000

        resp = client.get("/api/reports/dashboard/years", headers=admin_headers)
        assert len(resp.json["years"]) == 2
