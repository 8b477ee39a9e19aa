import pytest

from admission import check_admission, required_exposure
from conftest import D
from dex_errors import InsufficientBalance
from dex_models import DesiredOrder, OrderSide


def _orders():
    return [
        DesiredOrder(side=OrderSide.SELL, price=D("0.2"), quantity=D("50"), total=D("10"), symbol="XPR_XMD"),
        DesiredOrder(side=OrderSide.SELL, price=D("0.175"), quantity=D("57.1429"), total=D("10.000008"), symbol="XPR_XMD"),
        DesiredOrder(side=OrderSide.BUY, price=D("0.125"), quantity=D("80"), total=D("10"), symbol="XPR_XMD"),
    ]


def test_required_exposure_splits_by_side():
    base, quote = required_exposure(_orders())

    assert base == D("107.1429")
    assert quote == D("10")


def test_exact_balances_are_admitted(xmd_market):
    summary = check_admission(_orders(), xmd_market, D("107.1429"), D("10"))

    assert summary.required_base == D("107.1429")
    assert summary.available_quote == D("10")


@pytest.mark.parametrize("base, quote", [("107.1428", "100"), ("1000", "9.999999")])
def test_any_shortfall_rejects_the_whole_batch(xmd_market, base, quote):
    with pytest.raises(InsufficientBalance) as excinfo:
        check_admission(_orders(), xmd_market, D(base), D(quote))

    assert excinfo.value.symbol == "XPR_XMD"
    assert excinfo.value.required_base == D("107.1429")
    assert "XPR" in str(excinfo.value)


def test_empty_batch_always_passes(xmd_market):
    summary = check_admission([], xmd_market, D("0"), D("0"))

    assert summary.required_base == D("0")
    assert summary.required_quote == D("0")
