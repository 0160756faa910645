import pytest

from yieldpath.utils.amounts import split_amount


def test_last_share_takes_remainder():
    assert split_amount("100", 3) == ["33", "33", "34"]


def test_even_split():
    assert split_amount("1000", 4) == ["250", "250", "250", "250"]


def test_single_part_returns_input_unchanged():
    # No integer parsing for a single route, so odd inputs pass through
    assert split_amount("1e18", 1) == ["1e18"]


@pytest.mark.parametrize("amount,parts", [("1", 3), ("7", 2), ("123456789012345678901234567890", 7)])
def test_shares_sum_to_amount(amount, parts):
    shares = split_amount(amount, parts)
    assert len(shares) == parts
    assert sum(int(s) for s in shares) == int(amount)
    assert all(int(s) >= 0 for s in shares)


def test_zero_parts_rejected():
    with pytest.raises(ValueError, match="Cannot split amount across zero routes."):
        split_amount("100", 0)


@pytest.mark.parametrize("amount", ["1.5", "abc", "1_000", ""])
def test_non_integer_rejected_when_splitting(amount):
    with pytest.raises(ValueError, match="Amount must be an integer string"):
        split_amount(amount, 2)


def test_negative_rejected():
    with pytest.raises(ValueError, match="non-negative"):
        split_amount("-10", 2)
