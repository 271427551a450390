from decimal import Decimal

import pytest

from services.commission import split_amount, format_amount, to_decimal_string


def test_round_hundred_pounds_splits_ninety_ten():
    split = split_amount(10000, 10)
    assert split.payout_amount == 9000
    assert split.commission_amount == 1000


def test_commission_rounds_half_up_on_minor_units():
    # £99.99 at 10% -> 999.9p commission rounds to 1000p, provider gets £89.99
    split = split_amount(9999, 10)
    assert split.commission_amount == 1000
    assert split.payout_amount == 8999


def test_exact_half_penny_rounds_up():
    assert split_amount(5, 10).commission_amount == 1
    assert split_amount(4, 10).commission_amount == 0
    assert split_amount(15, 10).commission_amount == 2


def test_payout_plus_commission_always_equals_total():
    for total in (0, 1, 7, 99, 1001, 12345, 99999, 250001):
        for percent in (0, 10, 12.5, Decimal("7.5"), 100):
            split = split_amount(total, percent)
            assert split.payout_amount + split.commission_amount == total
            assert split.payout_amount >= 0


def test_rejects_bad_input():
    with pytest.raises(ValueError):
        split_amount(-1, 10)
    with pytest.raises(ValueError):
        split_amount(10.5, 10)
    with pytest.raises(ValueError):
        split_amount(100, 150)


def test_formatting():
    assert to_decimal_string(9000) == "90.00"
    assert to_decimal_string(8999) == "89.99"
    assert to_decimal_string(5) == "0.05"
    assert format_amount(9000, "gbp") == "£90.00"
    assert format_amount(1250, "USD") == "$12.50"
    assert format_amount(1500, "npr") == "15.00 NPR"
