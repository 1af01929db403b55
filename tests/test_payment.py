import pytest

from gourmetflow.services.payment import MockPaymentGateway


@pytest.mark.anyio
async def test_card_charge_succeeds():
    gateway = MockPaymentGateway(failure_rate=0.0)

    result = await gateway.charge(28.0, "offline_1", "credit_card")

    assert result.success
    assert result.status == "succeeded"
    assert result.transaction_id.startswith("txn_mock_")
    assert result.to_dict()["amount"] == 28.0


@pytest.mark.anyio
async def test_charging_an_order_twice_returns_first_result():
    gateway = MockPaymentGateway(failure_rate=0.0)

    first = await gateway.charge(28.0, "offline_1", "debit_card")
    second = await gateway.charge(28.0, "offline_1", "debit_card")

    assert second.transaction_id == first.transaction_id


@pytest.mark.anyio
async def test_pix_is_pending_until_paid():
    gateway = MockPaymentGateway(failure_rate=1.0)

    result = await gateway.charge(15.5, "offline_2", "pix")

    assert result.success
    assert result.status == "pending"


@pytest.mark.anyio
async def test_declines_are_reported():
    gateway = MockPaymentGateway(failure_rate=1.0)

    result = await gateway.charge(28.0, "offline_3", "credit_card")

    assert not result.success
    assert result.error_code in {code for code, _ in MockPaymentGateway.DECLINE_REASONS}


@pytest.mark.anyio
@pytest.mark.parametrize("method", ["cash", "pending"])
async def test_counter_methods_cannot_be_charged(method):
    result = await MockPaymentGateway(failure_rate=0.0).charge(28.0, "offline_4", method)

    assert not result.success
    assert result.error_code == "unsupported_method"


@pytest.mark.anyio
async def test_zero_amount_rejected():
    result = await MockPaymentGateway(failure_rate=0.0).charge(0.0, "offline_5", "credit_card")
    assert result.error_code == "invalid_amount"
