"""Service-level tests: money, calculator, numbering, policy and invoices."""

import datetime
import threading
from decimal import Decimal

import pytest

from conftest import actor_for, seed_tenants
from errors import AccessDenied, Conflict, NotFound, ValidationError
from extensions import db
from models import Invoice, InvoiceItem, Role, Tax
from services import calculator, money, numbering
from services import invoice as invoice_service
from services.policy import (
    Action,
    Actor,
    authorize_tax,
    authorize_tenant,
    can_access_tenant,
    not_found_message,
    resolve_issuer_id,
)
from services.reference import find_status, find_tax_by_rate, parse_rate


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------


class TestMoney:
    def test_truncate_does_not_round(self):
        assert money.truncate(Decimal("1.999")) == Decimal("1.99")
        assert money.truncate("0.005") == Decimal("0.00")

    def test_truncate_negative_toward_zero(self):
        assert money.truncate(Decimal("-1.239")) == Decimal("-1.23")

    def test_multiply_truncates(self):
        assert money.multiply("3.33", "3") == Decimal("9.99")
        assert money.multiply("0.1", "0.1") == Decimal("0.01")

    def test_divide_keeps_four_places(self):
        assert money.divide(19, 100) == Decimal("0.1900")
        assert money.divide(1, 3) == Decimal("0.3333")

    def test_divide_by_zero(self):
        with pytest.raises(ValidationError, match="Division by zero"):
            money.divide(1, 0)

    def test_float_goes_through_str(self):
        assert money.to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity"])
    def test_to_decimal_rejects(self, value):
        with pytest.raises(ValidationError):
            money.to_decimal(value)

    def test_format_money(self):
        assert money.format_money(Decimal("19")) == "19.00"
        assert money.format_money(None) == "0.00"

    def test_truncate_out_of_range(self):
        with pytest.raises(ValidationError, match="out of range") as excinfo:
            money.truncate("1e60", field="quantity")
        assert excinfo.value.field == "quantity"

    def test_bounded(self):
        assert money.bounded("99999999.999") == Decimal("99999999.99")
        with pytest.raises(ValidationError, match="must not exceed"):
            money.bounded("100000000")


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


class TestCalculator:
    def test_nineteen_percent(self):
        totals = calculator.calculate_line(Decimal("1"), Decimal("100.00"), Decimal("19"))
        assert totals.subtotal == Decimal("100.00")
        assert totals.tax_amount == Decimal("19.00")
        assert totals.total == Decimal("119.00")

    def test_exempt_line(self):
        totals = calculator.calculate_line(Decimal("1"), Decimal("10.00"), None)
        assert totals.tax_amount == Decimal("0.00")
        assert totals.total == Decimal("10.00")

    def test_tax_is_truncated(self):
        # 9.99 * 0.19 = 1.8981
        totals = calculator.calculate_line(Decimal("3"), Decimal("3.33"), Decimal("19"))
        assert totals.subtotal == Decimal("9.99")
        assert totals.tax_amount == Decimal("1.89")
        assert totals.total == Decimal("11.88")

    def test_zero_rate(self):
        totals = calculator.calculate_line(Decimal("2"), Decimal("5.00"), Decimal("0"))
        assert totals.tax_amount == Decimal("0.00")

    def test_calculation_is_idempotent(self):
        first = calculator.calculate_line(Decimal("2"), Decimal("50.00"), Decimal("8"))
        second = calculator.calculate_line(Decimal("2"), Decimal("50.00"), Decimal("8"))
        assert first == second
        assert first.tax_amount == Decimal("8.00")

    def test_validate_line_normalises(self):
        description, quantity, price = calculator.validate_line(" Work ", "2.999", 10)
        assert description == "Work"
        assert quantity == Decimal("2.99")
        assert price == Decimal("10.00")

    def test_validate_line_requires_description(self):
        with pytest.raises(ValidationError, match="Item description is required"):
            calculator.validate_line("", 1, 1)

    def test_validate_line_quantity_must_be_positive(self):
        with pytest.raises(ValidationError, match="greater than zero"):
            calculator.validate_line("Work", 0, 1)

    def test_validate_line_quantity_truncated_to_zero(self):
        with pytest.raises(ValidationError, match="greater than zero"):
            calculator.validate_line("Work", "0.009", 1)

    def test_validate_line_negative_price(self):
        with pytest.raises(ValidationError, match="cannot be negative"):
            calculator.validate_line("Work", 1, "-0.01")

    def test_validate_line_non_numeric(self):
        with pytest.raises(ValidationError, match="quantity is required"):
            calculator.validate_line("Work", "many", 1)
        with pytest.raises(ValidationError, match="unit price is required"):
            calculator.validate_line("Work", 1, None)

    @pytest.mark.parametrize(
        "quantity, unit_price, field",
        [
            ("1e60", "1", "quantity"),
            ("1", "1e60", "unit_price"),
            ("100000000", "1", "quantity"),
            ("1", "123456789.00", "unit_price"),
        ],
    )
    def test_validate_line_rejects_oversized_values(self, quantity, unit_price, field):
        with pytest.raises(ValidationError) as excinfo:
            calculator.validate_line("Work", quantity, unit_price)
        assert excinfo.value.field == field

    def test_validate_line_rejects_oversized_subtotal(self):
        with pytest.raises(ValidationError, match="subtotal is too large"):
            calculator.validate_line("Work", "100000", "100000")

    def test_aggregate(self):
        items = [
            InvoiceItem(subtotal=Decimal("100.00"), total=Decimal("119.00")),
            InvoiceItem(subtotal=Decimal("10.00"), total=Decimal("10.00")),
        ]
        assert calculator.aggregate(items) == (Decimal("110.00"), Decimal("129.00"))
        assert calculator.aggregate([]) == (Decimal("0.00"), Decimal("0.00"))


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


class TestNumberFormat:
    def test_format(self):
        assert numbering.format_invoice_number(7, 3) == "INV-7-3"

    def test_parse_own_number(self):
        assert numbering.parse_sequence(7, "INV-7-12") == 12

    def test_parse_foreign_number(self):
        assert numbering.parse_sequence(7, "INV-8-12") is None
        assert numbering.parse_sequence(7, "2024/001") is None
        assert numbering.parse_sequence(7, None) is None


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def _actor(tenant_id=1, tenant_is_admin=False, admin=False, active=True):
    roles = frozenset({Role.USER, Role.ADMIN}) if admin else frozenset({Role.USER})
    return Actor(
        user_id=1,
        tenant_id=tenant_id,
        tenant_is_admin=tenant_is_admin,
        roles=roles,
        is_active=active,
    )


class TestPolicy:
    def test_own_tenant_read_and_write(self):
        actor = _actor()
        assert can_access_tenant(actor, 1, Action.READ)
        assert can_access_tenant(actor, 1, Action.WRITE)

    def test_regular_tenant_confined(self):
        actor = _actor(admin=True)
        assert not can_access_tenant(actor, 2, Action.READ)
        assert not can_access_tenant(actor, 2, Action.WRITE)

    def test_admin_tenant_member_reads_but_does_not_write(self):
        actor = _actor(tenant_is_admin=True)
        assert can_access_tenant(actor, 2, Action.READ)
        assert not can_access_tenant(actor, 2, Action.WRITE)

    def test_admin_tenant_admin_writes_everywhere(self):
        actor = _actor(tenant_is_admin=True, admin=True)
        assert can_access_tenant(actor, 2, Action.WRITE)

    def test_inactive_actor_denied(self):
        actor = _actor(tenant_is_admin=True, admin=True, active=False)
        assert not can_access_tenant(actor, 1, Action.READ)
        with pytest.raises(AccessDenied, match="inactive"):
            authorize_tenant(actor, 1, Action.READ)

    def test_write_denied_message(self):
        with pytest.raises(AccessDenied, match="permission to modify"):
            authorize_tenant(_actor(tenant_is_admin=True), 2, Action.WRITE)

    def test_tax_writes_need_platform_admin(self):
        authorize_tax(_actor(), Action.READ)
        with pytest.raises(AccessDenied):
            authorize_tax(_actor(admin=True), Action.WRITE)
        authorize_tax(_actor(tenant_is_admin=True, admin=True), Action.WRITE)

    def test_not_found_message(self):
        assert not_found_message(_actor(tenant_is_admin=True), "Invoice") == "Invoice not found"
        assert "do not have access to this invoice" in not_found_message(_actor(), "Invoice")

    def test_regular_tenant_without_issuer(self):
        class NoIssuer:
            issuer_business_id = None

        with pytest.raises(ValidationError, match="does not have an issuer business"):
            resolve_issuer_id(_actor(), NoIssuer(), None)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class TestReferenceData:
    def test_seeded_taxes(self, ctx):
        assert find_tax_by_rate(None).name == "Exempted"
        assert find_tax_by_rate(Decimal("19")).name == "19%"
        assert Tax.query.count() == 4

    def test_seeded_statuses(self, ctx):
        for code in ("draft", "sent", "paid", "overdue", "cancelled"):
            assert find_status(code) is not None

    def test_parse_rate(self):
        assert parse_rate(None) is None
        assert parse_rate("8") == Decimal("8")
        with pytest.raises(ValidationError):
            parse_rate(20)


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def _invoice_data(receiver_id, items=None):
    return {
        "receiver_id": receiver_id,
        "invoice_date": "2024-01-01",
        "due_date": "2024-01-31",
        "items": items or [],
    }


def _insert_invoice(issuer_id, receiver_id, number):
    invoice = Invoice(
        issuer_id=issuer_id,
        receiver_id=receiver_id,
        invoice_number=number,
        invoice_date=datetime.date(2024, 1, 1),
        due_date=datetime.date(2024, 1, 31),
        status_id=find_status("draft").id,
    )
    db.session.add(invoice)
    db.session.commit()
    return invoice


class TestInvoiceService:
    def test_worked_example(self, ctx, tenants):
        actor = actor_for(tenants["owner1_id"])
        bundle = invoice_service.create_invoice(
            actor,
            tenants["b1_id"],
            _invoice_data(
                tenants["customer_id"],
                [
                    {"description": "Consulting", "quantity": 2, "unit_price": "50.00", "tax_rate": 19},
                    {"description": "Setup", "quantity": 1, "unit_price": "10.00", "tax_rate": None},
                ],
            ),
        )
        first, second = bundle.items
        assert (first.subtotal, first.tax_amount, first.total) == (
            Decimal("100.00"), Decimal("19.00"), Decimal("119.00"),
        )
        assert (second.subtotal, second.tax_amount, second.total) == (
            Decimal("10.00"), Decimal("0.00"), Decimal("10.00"),
        )
        assert bundle.invoice.subtotal == Decimal("110.00")
        assert bundle.invoice.total == Decimal("129.00")
        assert bundle.invoice.invoice_number == f"INV-{tenants['b1_id']}-1"
        assert bundle.status.code == "draft"
        assert [item.sort_order for item in bundle.items] == [0, 1]

    def test_sequential_numbers(self, ctx, tenants):
        actor = actor_for(tenants["owner1_id"])
        numbers = [
            invoice_service.create_invoice(
                actor, tenants["b1_id"], _invoice_data(tenants["customer_id"])
            ).invoice.invoice_number
            for _ in range(3)
        ]
        b1 = tenants["b1_id"]
        assert numbers == [f"INV-{b1}-1", f"INV-{b1}-2", f"INV-{b1}-3"]

    def test_numbers_are_per_issuer(self, ctx, tenants):
        first = invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]), tenants["b1_id"], _invoice_data(tenants["customer_id"])
        )
        second = invoice_service.create_invoice(
            actor_for(tenants["owner2_id"]), tenants["b2_id"], _invoice_data(tenants["customer_id"])
        )
        assert first.invoice.invoice_number.endswith("-1")
        assert second.invoice.invoice_number == f"INV-{tenants['b2_id']}-1"

    def test_foreign_number_restarts_at_one(self, ctx, tenants):
        _insert_invoice(tenants["b1_id"], tenants["customer_id"], "LEGACY-42")
        bundle = invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]), tenants["b1_id"], _invoice_data(tenants["customer_id"])
        )
        assert bundle.invoice.invoice_number == f"INV-{tenants['b1_id']}-1"

    def test_collision_is_retried(self, ctx, tenants):
        b1 = tenants["b1_id"]
        _insert_invoice(b1, tenants["customer_id"], f"INV-{b1}-2")
        _insert_invoice(b1, tenants["customer_id"], f"INV-{b1}-1")
        bundle = invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]), b1, _invoice_data(tenants["customer_id"])
        )
        assert bundle.invoice.invoice_number == f"INV-{b1}-3"
        assert Invoice.query.filter_by(issuer_id=b1).count() == 3

    def test_collision_exhaustion(self, ctx, tenants):
        b1 = tenants["b1_id"]
        _insert_invoice(b1, tenants["customer_id"], f"INV-{b1}-2")
        _insert_invoice(b1, tenants["customer_id"], f"INV-{b1}-3")
        _insert_invoice(b1, tenants["customer_id"], f"INV-{b1}-1")
        ctx.config["APP_CONFIG"].invoice_number_max_attempts = 2
        with pytest.raises(Conflict, match="after 2 attempts"):
            invoice_service.create_invoice(
                actor_for(tenants["owner1_id"]), b1, _invoice_data(tenants["customer_id"])
            )
        assert Invoice.query.filter_by(issuer_id=b1).count() == 3

    def test_regular_tenant_issues_from_its_issuer(self, ctx, tenants):
        # Creating through the customer business still issues from B1.
        bundle = invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]),
            tenants["customer_id"],
            _invoice_data(tenants["b2_id"]),
        )
        assert bundle.invoice.issuer_id == tenants["b1_id"]

    def test_article_must_belong_to_issuer(self, ctx, tenants):
        from services.article import create_article

        foreign = create_article(
            actor_for(tenants["owner2_id"]),
            tenants["b2_id"],
            {"name": "Widget", "unit_price": "5.00"},
        )
        with pytest.raises(ValidationError, match="issuer business"):
            invoice_service.create_invoice(
                actor_for(tenants["owner1_id"]),
                tenants["b1_id"],
                _invoice_data(
                    tenants["customer_id"],
                    [{"description": "W", "quantity": 1, "unit_price": 5, "article_id": foreign.id}],
                ),
            )

    def test_missing_dates(self, ctx, tenants):
        with pytest.raises(ValidationError, match="Invoice date is required"):
            invoice_service.create_invoice(
                actor_for(tenants["owner1_id"]),
                tenants["b1_id"],
                {"receiver_id": tenants["customer_id"], "due_date": "2024-01-31"},
            )

    def test_unknown_status(self, ctx, tenants):
        data = _invoice_data(tenants["customer_id"])
        data["status"] = "archived"
        with pytest.raises(ValidationError, match="Invalid invoice status"):
            invoice_service.create_invoice(actor_for(tenants["owner1_id"]), tenants["b1_id"], data)

    def test_unknown_receiver(self, ctx, tenants):
        with pytest.raises(NotFound, match="Receiver business not found"):
            invoice_service.create_invoice(
                actor_for(tenants["owner1_id"]), tenants["b1_id"], _invoice_data(99999)
            )

    def test_totals_follow_item_changes(self, ctx, tenants):
        actor = actor_for(tenants["owner1_id"])
        bundle = invoice_service.create_invoice(
            actor,
            tenants["b1_id"],
            _invoice_data(
                tenants["customer_id"],
                [{"description": "A", "quantity": 1, "unit_price": "100.00", "tax_rate": 19}],
            ),
        )
        invoice_id = bundle.invoice.id

        item, bundle = invoice_service.add_item(
            actor, invoice_id, {"description": "B", "quantity": 2, "unit_price": "5.00", "tax_rate": 8}
        )
        assert item.sort_order == 1
        assert bundle.invoice.total == Decimal("129.80")

        item, bundle = invoice_service.update_item(actor, invoice_id, item.id, {"quantity": 1})
        assert item.total == Decimal("5.40")
        assert bundle.invoice.total == Decimal("124.40")

        bundle = invoice_service.delete_item(actor, invoice_id, bundle.items[0].id)
        assert [i.sort_order for i in bundle.items] == [0]
        assert bundle.invoice.subtotal == Decimal("5.00")
        assert bundle.invoice.total == Decimal("5.40")

    def test_full_item_replacement(self, ctx, tenants):
        actor = actor_for(tenants["owner1_id"])
        bundle = invoice_service.create_invoice(
            actor,
            tenants["b1_id"],
            _invoice_data(
                tenants["customer_id"],
                [{"description": "A", "quantity": 1, "unit_price": "1.00"}],
            ),
        )
        bundle = invoice_service.update_invoice(
            actor,
            tenants["b1_id"],
            bundle.invoice.id,
            {"status": "sent", "items": [{"description": "B", "quantity": 3, "unit_price": "2.00"}]},
        )
        assert [i.description for i in bundle.items] == ["B"]
        assert bundle.invoice.total == Decimal("6.00")
        assert bundle.status.code == "sent"
        assert InvoiceItem.query.count() == 1

    def test_reorder(self, ctx, tenants):
        actor = actor_for(tenants["owner1_id"])
        bundle = invoice_service.create_invoice(
            actor,
            tenants["b1_id"],
            _invoice_data(
                tenants["customer_id"],
                [
                    {"description": name, "quantity": 1, "unit_price": "1.00"}
                    for name in ("a", "b", "c")
                ],
            ),
        )
        a, b, c = (item.id for item in bundle.items)
        bundle = invoice_service.reorder_items(actor, bundle.invoice.id, [c, a, b])
        assert [i.description for i in bundle.items] == ["c", "a", "b"]
        assert [i.sort_order for i in bundle.items] == [0, 1, 2]

    def test_reorder_requires_every_item(self, ctx, tenants):
        actor = actor_for(tenants["owner1_id"])
        bundle = invoice_service.create_invoice(
            actor,
            tenants["b1_id"],
            _invoice_data(
                tenants["customer_id"],
                [{"description": n, "quantity": 1, "unit_price": "1.00"} for n in ("a", "b")],
            ),
        )
        with pytest.raises(ValidationError, match="must be included"):
            invoice_service.reorder_items(actor, bundle.invoice.id, [bundle.items[0].id])
        with pytest.raises(ValidationError, match="not found"):
            invoice_service.reorder_items(actor, bundle.invoice.id, [bundle.items[0].id, 99999])

    def test_other_tenant_cannot_touch_items(self, ctx, tenants):
        bundle = invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]), tenants["b1_id"], _invoice_data(tenants["customer_id"])
        )
        with pytest.raises(AccessDenied):
            invoice_service.list_items(actor_for(tenants["owner2_id"]), bundle.invoice.id)

    def test_admin_tenant_member_reads_not_writes(self, ctx, tenants):
        bundle = invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]), tenants["b1_id"], _invoice_data(tenants["customer_id"])
        )
        staff = actor_for(tenants["staff_id"])
        assert invoice_service.list_items(staff, bundle.invoice.id).invoice.id == bundle.invoice.id
        with pytest.raises(AccessDenied):
            invoice_service.add_item(
                staff, bundle.invoice.id, {"description": "x", "quantity": 1, "unit_price": 1}
            )

    def test_list_all_invoices_admin_only(self, ctx, tenants):
        invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]), tenants["b1_id"], _invoice_data(tenants["customer_id"])
        )
        assert len(invoice_service.list_all_invoices(actor_for(tenants["staff_id"]))) == 1
        with pytest.raises(AccessDenied, match="Only admin tenants"):
            invoice_service.list_all_invoices(actor_for(tenants["owner1_id"]))

    def test_issuer_change_unlinks_foreign_articles(self, ctx, tenants):
        from services.article import create_article

        article = create_article(
            actor_for(tenants["owner1_id"]),
            tenants["b1_id"],
            {"name": "Hosting", "unit_price": "20.00"},
        )
        bundle = invoice_service.create_invoice(
            actor_for(tenants["owner1_id"]),
            tenants["b1_id"],
            _invoice_data(
                tenants["customer_id"],
                [{"description": "Hosting", "quantity": 1, "unit_price": 20, "article_id": article.id}],
            ),
        )
        assert bundle.items[0].article_id == article.id

        bundle = invoice_service.update_invoice(
            actor_for(tenants["admin_id"]),
            tenants["b1_id"],
            bundle.invoice.id,
            {"issuer_id": tenants["b2_id"]},
        )
        assert bundle.invoice.issuer_id == tenants["b2_id"]
        assert bundle.items[0].article_id is None
        assert bundle.items[0].total == Decimal("20.00")


class TestConcurrentNumbering:
    def test_parallel_creation_never_shares_a_number(self, file_app):
        ids = seed_tenants(file_app)
        results, errors = [], []
        barrier = threading.Barrier(2)

        def create():
            with file_app.app_context():
                actor = actor_for(ids["owner1_id"])
                barrier.wait(timeout=10)
                try:
                    bundle = invoice_service.create_invoice(
                        actor, ids["b1_id"], _invoice_data(ids["customer_id"])
                    )
                    results.append(bundle.invoice.invoice_number)
                except Conflict as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=create) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert len(results) + len(errors) == 2
        assert len(set(results)) == len(results)
        with file_app.app_context():
            stored = [
                number
                for (number,) in db.session.query(Invoice.invoice_number).filter_by(
                    issuer_id=ids["b1_id"]
                )
            ]
        assert sorted(stored) == sorted(results)
