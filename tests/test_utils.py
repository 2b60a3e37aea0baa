from decimal import Decimal

import pytest

from marketplace.utils.money import mask_account, split_commission, to_minor_units, to_money
from marketplace.utils.result import Result
from marketplace.utils.signatures import payment_signature, signatures_match


class TestMoney:
    def test_to_money_quantizes(self):
        assert to_money("10") == Decimal("10.00")
        assert to_money(0.1 + 0.2) == Decimal("0.30")
        assert to_money("2.005") == Decimal("2.01")

    @pytest.mark.parametrize("junk", [None, True, "abc", "NaN", "Infinity"])
    def test_to_money_rejects_junk(self, junk):
        with pytest.raises(ValueError):
            to_money(junk)

    def test_split_commission(self):
        assert split_commission("1000", 5) == (Decimal("50.00"), Decimal("950.00"))
        assert split_commission("0.01", 5) == (Decimal("0.00"), Decimal("0.01"))

    def test_minor_units(self):
        assert to_minor_units("500.5") == 50050

    def test_mask_account(self):
        assert mask_account("123456789012") == "****9012"
        assert mask_account(None) is None


class TestSignatures:
    def test_payment_signature_is_order_then_payment(self):
        sig = payment_signature("k", "order_1", "pay_1")
        assert sig != payment_signature("k", "pay_1", "order_1")
        assert signatures_match(sig, sig)

    def test_empty_never_matches(self):
        assert not signatures_match("", "")
        assert not signatures_match("abc", None)

    @pytest.mark.parametrize("provided", [12345, ["abc"], {"sig": "abc"}])
    def test_non_string_never_matches(self, provided):
        assert not signatures_match("abc", provided)


class TestResult:
    def test_success_and_failure(self):
        assert Result.success(1).ok
        failure = Result.failure("FORBIDDEN", "no", 403)
        assert not failure.ok
        assert failure.error.status == 403
