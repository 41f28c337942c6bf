from decimal import Decimal

import pytest

from dte_engine.domain.entities import AdditionalTax, DocumentTotals, LineItem
from dte_engine.domain.exceptions import InvalidLineItem
from dte_engine.domain.totals import compute_totals, round_clp


def _item(**overrides) -> LineItem:
    data = {"description": "Servicio", "quantity": 1, "unit_price": 1000}
    data.update(overrides)
    return LineItem(**data)


class TestRoundClp:
    @pytest.mark.parametrize(
        "amount, expected",
        [("0.5", 1), ("1.5", 2), ("2.5", 3), ("28.5", 29), ("2.49", 2), ("-0.5", -1)],
    )
    def test_half_up(self, amount, expected):
        assert round_clp(Decimal(amount)) == expected


class TestComputeTotals:
    def test_simple_taxable(self):
        totals = compute_totals([_item(quantity=2, unit_price=10000)])
        assert totals == DocumentTotals(net=20000, exempt=0, tax=3800, total=23800)

    def test_mixed_taxable_and_exempt(self):
        totals = compute_totals(
            [
                _item(quantity=2, unit_price=10000),
                _item(description="Flete exento", unit_price=5000, exempt=True),
            ]
        )
        assert totals.net == 20000
        assert totals.exempt == 5000
        assert totals.tax == 3800
        assert totals.total == 28800

    def test_discount_applied_before_tax(self):
        totals = compute_totals([_item(quantity=3, unit_price=1000, discount_pct=10)])
        assert totals.net == 2700
        assert totals.tax == 513
        assert totals.total == 3213

    def test_full_discount_is_zero(self):
        totals = compute_totals([_item(discount_pct=100)])
        assert totals.total == 0

    def test_rounding_on_aggregate_not_per_line(self):
        # 3 x 166.5: por línea serían 501, sobre el agregado 499.5 -> 500
        items = [_item(quantity="0.5", unit_price=333) for _ in range(3)]
        totals = compute_totals(items)
        assert totals.net == 500
        assert totals.tax == 95

    def test_tax_rounds_half_up(self):
        totals = compute_totals([_item(unit_price=150)])
        assert totals.tax == 29
        assert totals.total == 179

    def test_total_is_sum_of_parts(self):
        totals = compute_totals(
            [
                _item(quantity="1.333", unit_price=7777, discount_pct="12.5"),
                _item(quantity=7, unit_price=311, exempt=True, discount_pct=3),
            ]
        )
        assert totals.total == totals.net + totals.tax + totals.exempt

    def test_additional_taxes_reported_separately(self):
        item = _item(
            unit_price=10000,
            additional_taxes=[AdditionalTax(code="27", rate="10", amount="1000.4")],
        )
        totals = compute_totals([item])
        assert totals.additional_tax == 1000
        assert totals.total == 11900

    def test_empty_items_yield_zero(self):
        assert compute_totals([]) == DocumentTotals()

    def test_is_deterministic(self):
        items = [_item(quantity="2.5", unit_price=999, discount_pct="7.5")]
        assert compute_totals(items) == compute_totals(list(items))


class TestItemValidation:
    def test_zero_quantity(self):
        with pytest.raises(InvalidLineItem) as exc_info:
            compute_totals([_item(), _item(quantity=0)])
        assert exc_info.value.index == 1
        assert exc_info.value.field == "quantity"
        assert "Ítem 2" in str(exc_info.value)

    def test_negative_quantity(self):
        with pytest.raises(InvalidLineItem, match="quantity"):
            compute_totals([_item(quantity=-1)])

    def test_negative_price(self):
        with pytest.raises(InvalidLineItem) as exc_info:
            compute_totals([_item(unit_price=-10)])
        assert exc_info.value.field == "unit_price"

    def test_fractional_price(self):
        with pytest.raises(InvalidLineItem, match="entero"):
            compute_totals([_item(unit_price="10.5")])

    @pytest.mark.parametrize("discount", ["-1", "100.01", "150"])
    def test_discount_out_of_range(self, discount):
        with pytest.raises(InvalidLineItem) as exc_info:
            compute_totals([_item(discount_pct=discount)])
        assert exc_info.value.field == "discount_pct"

    def test_blank_description(self):
        with pytest.raises(InvalidLineItem) as exc_info:
            compute_totals([_item(description="   ")])
        assert exc_info.value.field == "description"

    def test_non_numeric_value_rejected_on_construction(self):
        with pytest.raises(InvalidLineItem, match="no es un número"):
            _item(quantity="dos")


class TestProperties:
    def test_reference_example(self):
        totals = compute_totals([_item(quantity=1, unit_price=100000)])
        assert (totals.net, totals.tax, totals.total) == (100000, 19000, 119000)

    def test_order_independent(self):
        items = [
            _item(quantity="0.5", unit_price=333),
            _item(quantity=3, unit_price=999, discount_pct="33.3"),
            _item(unit_price=4500, exempt=True),
        ]
        assert compute_totals(items) == compute_totals(list(reversed(items)))
