from decimal import Decimal
from types import SimpleNamespace

from backend.fees_module import sweeper
from backend.fees_module.calculator import DEFAULT_POLICY
from conftest import approving_gateway


def test_scheduled_sweep_uses_its_own_session(session_factory, codec, service, fee, monkeypatch):
    monkeypatch.setattr(sweeper, "SessionLocal", session_factory)
    state = SimpleNamespace(codec=codec, gateway=approving_gateway(), late_fee_policy=DEFAULT_POLICY)

    # The fixture fee fell due in early 2024, so by the wall clock it is long overdue.
    assert sweeper.run_late_fee_sweep(state) == 1
    assert sweeper.run_late_fee_sweep(state) == 0

    service.db.expire_all()
    assert service.get(fee.id).fine_amount == Decimal("500")
