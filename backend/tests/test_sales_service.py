"""
Sales transaction writer: checkout, invoice edits and voids keep stock,
lines and movements consistent, and a rejected sale leaves nothing behind.
"""

import json
from datetime import timedelta

import pytest

from kasir.extensions import db
from kasir.models import Sale, SaleLine, StockMovement, EventProduct
from kasir.services import events_service, products_service, sales_service
from kasir.services.sales_service import CartItemInput, SaleError, parse_cart_items
from kasir.services.stock_service import InsufficientStockError
from kasir.validation import NotFoundError, ValidationError
from kasir.time_utils import utcnow, to_utc_z


def _stock(product):
    db.session.refresh(product)
    return product.stock


def _ledger_sum(product_id):
    rows = db.session.query(StockMovement).filter_by(product_id=product_id).all()
    return sum(m.stock_in - m.stock_out for m in rows)


def _counts():
    return (
        db.session.query(Sale).count(),
        db.session.query(SaleLine).count(),
        db.session.query(StockMovement).count(),
    )


class TestParseCartItems:

    def test_pos_form_keys_from_json_text(self):
        raw = json.dumps([{"id": "3", "quantity": "2", "diskon": "500", "event_produkId": 7}])
        items = parse_cart_items(raw)
        assert items == [CartItemInput(product_id=3, quantity=2, item_discount=500, event_product_id=7)]

    def test_api_keys(self):
        items = parse_cart_items([{"product_id": 1, "qty": 1}])
        assert items == [CartItemInput(product_id=1, quantity=1)]

    @pytest.mark.parametrize("raw", [
        "not json",
        {"id": 1},
        [{"quantity": 1}],
        [{"id": 1}],
        [{"id": 1, "quantity": 0}],
        [{"id": 1, "quantity": 1, "diskon": -5}],
    ])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValidationError):
            parse_cart_items(raw)


class TestCreateSale:

    def test_walk_in_checkout(self, petugas_user, make_product):
        teh = make_product(name="Teh", sale_price=5000, cost_price=3000, stock=10)
        kopi = make_product(name="Kopi", sale_price=8000, cost_price=4000, stock=4)

        sale = sales_service.create_sale(
            user_id=petugas_user.id,
            items=[CartItemInput(teh.id, 2), CartItemInput(kopi.id, 1, item_discount=1000)],
            amount_tendered=20000,
        )

        assert sale.subtotal == 18000
        assert sale.discount == 1000
        assert sale.customer_discount == 0
        assert sale.net_total == 17000
        assert sale.change == 3000
        assert sale.customer_id is None

        lines = sale.live_lines()
        assert [(line.product_id, line.quantity, line.unit_price, line.unit_cost) for line in lines] == [
            (teh.id, 2, 5000, 3000),
            (kopi.id, 1, 8000, 4000),
        ]
        assert lines[1].line_total == 7000

        assert _stock(teh) == 8
        assert _stock(kopi) == 3
        assert _ledger_sum(teh.id) == 8
        outs = db.session.query(StockMovement).filter_by(sale_id=sale.id).all()
        assert sorted(m.stock_out for m in outs) == [1, 2]

    def test_registered_customer_discount(self, petugas_user, make_product, customer):
        p = make_product(sale_price=10000, stock=5)
        sale = sales_service.create_sale(
            user_id=petugas_user.id,
            items=[CartItemInput(p.id, 1)],
            customer_id=customer.id,
            amount_tendered=9000,
        )
        assert sale.customer_discount == 1000
        assert sale.net_total == 9000
        assert sale.change == 0

    def test_adjustment(self, petugas_user, make_product):
        p = make_product(sale_price=10000, stock=5)
        sale = sales_service.create_sale(
            user_id=petugas_user.id,
            items=[CartItemInput(p.id, 1)],
            adjustment=-250,
            amount_tendered=10000,
        )
        assert sale.net_total == 9750
        assert sale.change == 250

    def test_invoice_number(self, petugas_user, make_product):
        p = make_product(stock=5)
        sale = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 1)],
                                         amount_tendered=100000)
        assert sale.invoice_number == f"{sale.id:04d}/INV/IK/{sale.sold_at.year}"

    def test_short_payment_rejected_before_anything_is_written(self, petugas_user, make_product):
        p = make_product(sale_price=10000, stock=5)
        before = _counts()

        with pytest.raises(SaleError) as exc:
            sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 2)],
                                      amount_tendered=19999)

        assert exc.value.details["net_total"] == 20000
        assert _counts() == before
        assert _stock(p) == 5

    def test_insufficient_stock_lists_every_short_product(self, petugas_user, make_product):
        a = make_product(name="Gula", stock=1)
        b = make_product(name="Beras", stock=10)
        c = make_product(name="Minyak", stock=0)
        before = _counts()

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(
                user_id=petugas_user.id,
                items=[CartItemInput(a.id, 2), CartItemInput(b.id, 1), CartItemInput(c.id, 1)],
                amount_tendered=10**9,
            )

        assert str(exc.value) == "Insufficient stock for Gula and Minyak"
        assert {i["product_id"] for i in exc.value.details["items"]} == {a.id, c.id}
        assert _counts() == before
        assert (_stock(a), _stock(b), _stock(c)) == (1, 10, 0)

    def test_repeated_product_lines_checked_together(self, petugas_user, make_product):
        p = make_product(stock=3)
        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(
                user_id=petugas_user.id,
                items=[CartItemInput(p.id, 2), CartItemInput(p.id, 2)],
                amount_tendered=10**9,
            )
        assert _stock(p) == 3

    def test_empty_cart(self, petugas_user):
        with pytest.raises(SaleError):
            sales_service.create_sale(user_id=petugas_user.id, items=[], amount_tendered=0)

    def test_operator_required_and_active(self, petugas_user, make_product):
        p = make_product(stock=5)
        with pytest.raises(SaleError):
            sales_service.create_sale(user_id=None, items=[CartItemInput(p.id, 1)], amount_tendered=10**6)

        petugas_user.status = "inactive"
        db.session.commit()
        with pytest.raises(SaleError):
            sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 1)],
                                      amount_tendered=10**6)

    def test_unknown_customer_and_product(self, petugas_user, make_product):
        p = make_product(stock=5)
        with pytest.raises(SaleError):
            sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 1)],
                                      customer_id=999999, amount_tendered=10**6)
        with pytest.raises(SaleError):
            sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(999999, 1)],
                                      amount_tendered=10**6)

    def test_future_sold_at_rejected(self, petugas_user, make_product):
        p = make_product(stock=5)
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                user_id=petugas_user.id,
                items=[CartItemInput(p.id, 1)],
                amount_tendered=10**6,
                sold_at=to_utc_z(utcnow() + timedelta(hours=1)),
            )

    def test_backdated_sale(self, petugas_user, make_product):
        p = make_product(stock=5)
        sold_at = utcnow() - timedelta(days=3)
        sale = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 1)],
                                         amount_tendered=10**6, sold_at=sold_at)
        assert sale.sold_at == sold_at
        assert all(line.sold_at == sold_at for line in sale.live_lines())


class TestEventDiscounts:

    def _attach(self, event, product, bps):
        ep = EventProduct(event_id=event.id, product_id=product.id, discount_bps=bps)
        db.session.add(ep)
        db.session.commit()
        return ep

    def test_active_event_applies(self, petugas_user, make_product, make_event):
        p = make_product(sale_price=10000, stock=5)
        ep = self._attach(make_event(), p, 2500)

        sale = sales_service.create_sale(
            user_id=petugas_user.id,
            items=[CartItemInput(p.id, 2, event_product_id=ep.id)],
            amount_tendered=15000,
        )
        assert sale.net_total == 15000
        line = sale.live_lines()[0]
        assert line.event_product_id == ep.id
        assert line.event_discount_bps == 2500

    def test_expired_event_rejected(self, petugas_user, make_product, make_event):
        p = make_product(stock=5)
        ep = self._attach(make_event(starts_in=timedelta(days=-10), ends_in=timedelta(days=-5)), p, 2500)
        with pytest.raises(SaleError):
            sales_service.create_sale(user_id=petugas_user.id,
                                      items=[CartItemInput(p.id, 1, event_product_id=ep.id)],
                                      amount_tendered=10**6)

    def test_event_for_another_product_rejected(self, petugas_user, make_product, make_event):
        a = make_product(name="A", stock=5)
        b = make_product(name="B", stock=5)
        ep = self._attach(make_event(), a, 2500)
        with pytest.raises(SaleError):
            sales_service.create_sale(user_id=petugas_user.id,
                                      items=[CartItemInput(b.id, 1, event_product_id=ep.id)],
                                      amount_tendered=10**6)

    def test_event_and_customer_discounts_sum(self, petugas_user, make_product, make_event, customer):
        p = make_product(sale_price=10000, stock=5)
        ep = self._attach(make_event(), p, 1000)
        totals = sales_service.quote_cart(
            items=[CartItemInput(p.id, 1, event_product_id=ep.id)],
            customer_id=customer.id,
        )
        assert totals.net_total == 8000


class TestUpdateSale:

    def _sale(self, user, *items, **kwargs):
        kwargs.setdefault("amount_tendered", 10**7)
        return sales_service.create_sale(user_id=user.id, items=list(items), **kwargs)

    def test_quantity_changes_move_only_the_difference(self, petugas_user, admin_user, make_product):
        a = make_product(name="A", sale_price=1000, stock=10)
        b = make_product(name="B", sale_price=2000, stock=10)
        c = make_product(name="C", sale_price=3000, stock=10)
        sale = self._sale(petugas_user, CartItemInput(a.id, 3), CartItemInput(b.id, 2))

        sales_service.update_sale(
            sale.id,
            items=[CartItemInput(a.id, 5), CartItemInput(c.id, 1)],
            amount_tendered=10**7,
            actor_user_id=admin_user.id,
        )

        assert (_stock(a), _stock(b), _stock(c)) == (5, 10, 9)
        for p in (a, b, c):
            assert _ledger_sum(p.id) == _stock(p)

        sale = sales_service.get_sale(sale.id)
        assert [(line.product_id, line.quantity) for line in sale.live_lines()] == [(a.id, 5), (c.id, 1)]
        assert sale.subtotal == 5 * 1000 + 3000

    def test_resaving_same_cart_is_stock_neutral(self, petugas_user, make_product):
        p = make_product(stock=10)
        sale = self._sale(petugas_user, CartItemInput(p.id, 4))
        movements_before = db.session.query(StockMovement).count()

        for _ in range(3):
            sales_service.update_sale(sale.id, items=[CartItemInput(p.id, 4)], amount_tendered=10**7)

        assert _stock(p) == 6
        assert db.session.query(StockMovement).count() == movements_before

    def test_existing_lines_keep_their_price_snapshot(self, petugas_user, make_product):
        old = make_product(name="Old", sale_price=1000, cost_price=600, stock=10)
        new = make_product(name="New", sale_price=2000, stock=10)
        sale = self._sale(petugas_user, CartItemInput(old.id, 1))

        old.sale_price = 5000
        old.cost_price = 4000
        db.session.commit()

        sale = sales_service.update_sale(
            sale.id,
            items=[CartItemInput(old.id, 2), CartItemInput(new.id, 1)],
            amount_tendered=10**7,
        )
        prices = {line.product_id: (line.unit_price, line.unit_cost) for line in sale.live_lines()}
        assert prices[old.id] == (1000, 600)
        assert prices[new.id][0] == 2000
        assert sale.subtotal == 2 * 1000 + 2000

    def test_failed_edit_leaves_sale_untouched(self, petugas_user, make_product):
        p = make_product(stock=5)
        sale = self._sale(petugas_user, CartItemInput(p.id, 2))
        net_before = sale.net_total

        with pytest.raises(InsufficientStockError):
            sales_service.update_sale(sale.id, items=[CartItemInput(p.id, 10)], amount_tendered=10**7)

        sale = sales_service.get_sale(sale.id)
        assert [(line.product_id, line.quantity) for line in sale.live_lines()] == [(p.id, 2)]
        assert sale.net_total == net_before
        assert _stock(p) == 3

    def test_edit_can_use_units_it_already_holds(self, petugas_user, make_product):
        p = make_product(stock=3)
        sale = self._sale(petugas_user, CartItemInput(p.id, 3))
        assert _stock(p) == 0

        sales_service.update_sale(sale.id, items=[CartItemInput(p.id, 3)], amount_tendered=10**7)
        assert _stock(p) == 0

    def test_short_payment_on_edit(self, petugas_user, make_product):
        p = make_product(sale_price=1000, stock=5)
        sale = self._sale(petugas_user, CartItemInput(p.id, 1), amount_tendered=1000)
        with pytest.raises(SaleError):
            sales_service.update_sale(sale.id, items=[CartItemInput(p.id, 2)], amount_tendered=1000)
        assert _stock(p) == 4

    def test_missing_sale(self, petugas_user, make_product):
        p = make_product(stock=5)
        with pytest.raises(NotFoundError):
            sales_service.update_sale(999999, items=[CartItemInput(p.id, 1)], amount_tendered=10**6)

    def test_dropping_a_discontinued_product_returns_its_units(self, petugas_user, make_product):
        gone = make_product(name="Gone", stock=5)
        kept = make_product(name="Kept", stock=5)
        sale = self._sale(petugas_user, CartItemInput(gone.id, 2), CartItemInput(kept.id, 1))
        products_service.delete_product(gone.id)

        sales_service.update_sale(sale.id, items=[CartItemInput(kept.id, 1)], amount_tendered=10**7)

        assert _stock(gone) == 5
        assert _ledger_sum(gone.id) == 5
        assert gone.is_deleted

    def test_discontinued_lines_can_be_kept_or_reduced(self, petugas_user, make_product, make_event):
        p = make_product(sale_price=10000, stock=5)
        ep = EventProduct(event_id=make_event().id, product_id=p.id, discount_bps=2000)
        db.session.add(ep)
        db.session.commit()
        sale = self._sale(petugas_user, CartItemInput(p.id, 3, event_product_id=ep.id))

        events_service.remove_event_product(ep.event_id, ep.id)
        products_service.delete_product(p.id)

        sale = sales_service.update_sale(
            sale.id,
            items=[CartItemInput(p.id, 2, event_product_id=ep.id)],
            amount_tendered=10**7,
        )

        line = sale.live_lines()[0]
        assert (line.quantity, line.unit_price, line.event_discount_bps) == (2, 10000, 2000)
        assert sale.net_total == 16000
        assert _stock(p) == 3

    def test_discontinued_product_cannot_be_increased(self, petugas_user, make_product):
        p = make_product(stock=5)
        sale = self._sale(petugas_user, CartItemInput(p.id, 1))
        products_service.delete_product(p.id)

        with pytest.raises(SaleError):
            sales_service.update_sale(sale.id, items=[CartItemInput(p.id, 2)], amount_tendered=10**7)
        assert _stock(p) == 4

    def test_discontinued_product_cannot_be_added(self, petugas_user, make_product):
        a = make_product(name="A", stock=5)
        b = make_product(name="B", stock=5)
        sale = self._sale(petugas_user, CartItemInput(a.id, 1))
        products_service.delete_product(b.id)

        with pytest.raises(SaleError):
            sales_service.update_sale(sale.id, items=[CartItemInput(a.id, 1), CartItemInput(b.id, 1)],
                                      amount_tendered=10**7)


class TestDeleteSale:

    def test_delete_returns_stock(self, petugas_user, admin_user, make_product):
        p = make_product(stock=5)
        sale = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 2)],
                                         amount_tendered=10**6)
        assert _stock(p) == 3

        sales_service.delete_sale(sale.id, actor_user_id=admin_user.id)

        assert _stock(p) == 5
        assert _ledger_sum(p.id) == 5
        with pytest.raises(NotFoundError):
            sales_service.get_sale(sale.id)
        deleted = db.session.get(Sale, sale.id)
        assert deleted.is_deleted
        assert all(line.is_deleted for line in deleted.lines)

    def test_delete_twice(self, petugas_user, make_product):
        p = make_product(stock=5)
        sale = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 1)],
                                         amount_tendered=10**6)
        sales_service.delete_sale(sale.id)
        with pytest.raises(NotFoundError):
            sales_service.delete_sale(sale.id)
        assert _stock(p) == 5

    def test_void_after_product_was_discontinued(self, petugas_user, admin_user, make_product):
        p = make_product(stock=5)
        sale = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 2)],
                                         amount_tendered=10**6)
        products_service.delete_product(p.id)

        sales_service.delete_sale(sale.id, actor_user_id=admin_user.id)

        assert _stock(p) == 5
        assert _ledger_sum(p.id) == 5
        assert db.session.get(Sale, sale.id).is_deleted


class TestListSales:

    def test_search_and_filters(self, petugas_user, make_product, customer):
        p = make_product(sale_price=1000, stock=50)
        walk_in = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 1)],
                                            amount_tendered=10**6)
        member = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 5)],
                                           customer_id=customer.id, amount_tendered=10**6)

        result = sales_service.list_sales(search="budi")
        assert [s["id"] for s in result["items"]] == [member.id]

        result = sales_service.list_sales(search="Kasir")
        assert {s["id"] for s in result["items"]} == {walk_in.id, member.id}

        result = sales_service.list_sales(min_total=2000)
        assert [s["id"] for s in result["items"]] == [member.id]

        result = sales_service.list_sales(customer_id=customer.id)
        assert result["pagination"]["total"] == 1

    def test_newest_first_with_pagination(self, petugas_user, make_product):
        p = make_product(stock=50)
        ids = [
            sales_service.create_sale(
                user_id=petugas_user.id,
                items=[CartItemInput(p.id, 1)],
                amount_tendered=10**6,
                sold_at=utcnow() - timedelta(days=days),
            ).id
            for days in (3, 2, 1)
        ]

        page1 = sales_service.list_sales(page=1, per_page=2)
        assert [s["id"] for s in page1["items"]] == [ids[2], ids[1]]
        assert page1["pagination"]["has_next"] is True

        page2 = sales_service.list_sales(page=2, per_page=2)
        assert [s["id"] for s in page2["items"]] == [ids[0]]

    def test_deleted_sales_hidden(self, petugas_user, make_product):
        p = make_product(stock=5)
        sale = sales_service.create_sale(user_id=petugas_user.id, items=[CartItemInput(p.id, 1)],
                                         amount_tendered=10**6)
        sales_service.delete_sale(sale.id)
        assert sales_service.list_sales()["items"] == []
