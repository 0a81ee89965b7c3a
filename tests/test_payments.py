import pytest

from payments import MockPaymentGateway

from conftest import run


class TestMockPaymentGateway:
    def test_charge_and_refund(self):
        gateway = MockPaymentGateway()
        charge = run(gateway.charge(20800, "mtn"))
        assert charge.success is True
        assert charge.reference.startswith("pi_")

        refund = run(gateway.refund(20800, charge.reference))
        assert refund.success is True
        assert refund.reference.startswith("re_")

    def test_keeps_no_ledger_between_calls(self):
        gateway = MockPaymentGateway()
        for _ in range(3):
            run(gateway.charge(1000, "card"))
        assert vars(gateway).keys() == {"failure_rate", "_rng"}

    def test_declines_at_full_failure_rate(self):
        charge = run(MockPaymentGateway(failure_rate=1.0).charge(1000, "airtel"))
        assert charge.success is False
        assert charge.failure_reason == "Insufficient funds"

    def test_refund_needs_a_charge_reference(self):
        assert run(MockPaymentGateway().refund(1000, "")).success is False

    def test_negative_amount_is_rejected(self):
        with pytest.raises(ValueError):
            run(MockPaymentGateway().charge(-1, "mtn"))
