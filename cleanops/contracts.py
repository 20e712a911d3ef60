from __future__ import annotations

from datetime import date
from typing import Iterable

from cleanops.constants import CONTRACT_ACTIVE, REASON_CONTRACT_EXPIRED, REASON_NO_CONTRACT
from cleanops.models import ContractRecord, ValidationResult


class ContractGate:
    def __init__(self, contracts: Iterable[ContractRecord], today: date) -> None:
        self.contracts = list(contracts)
        self.today = today

    def can_schedule_for_client(self, client_id: str, on_date: date | None = None) -> ValidationResult:
        """Fails closed: a client with no usable active contract cannot get new cleanings."""
        target = on_date or self.today
        active = [
            item
            for item in self.contracts
            if item.client_id == client_id and item.status == CONTRACT_ACTIVE
        ]
        if not active:
            return ValidationResult(ok=False, reason=REASON_NO_CONTRACT)
        if any(self._covers(item, target) for item in active):
            return ValidationResult(ok=True)
        return ValidationResult(ok=False, reason=REASON_CONTRACT_EXPIRED)

    def _covers(self, contract: ContractRecord, target: date) -> bool:
        if contract.start_date and contract.start_date > target:
            return False
        if contract.end_date and contract.end_date < max(target, self.today):
            return False
        return True
