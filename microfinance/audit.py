"""
Audit Trail Module

Append-only, hash-chained log of every state-changing operation: who did
what to which record, with before/after snapshots. Snapshots are typed per
action so consumers can switch on the action and get a known shape back.

Writes are a best-effort side effect of the primary operation by default:
a failed audit insert is logged and never undoes or blocks the mutation
that triggered it. Strict mode raises instead.
"""

import hashlib
import json
import logging
import threading
import uuid
from datetime import datetime, date, timezone
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel

from .actors import Actor, require_admin
from .errors import DependencyError
from .logging_config import log_action
from .storage import StorageInterface, StorageRecord
from .valuation import interest_from_snapshot

logger = logging.getLogger("microfinance.audit")


class AuditAction(Enum):
    """Types of audited operations"""
    CREATE_CLIENT = "CREATE_CLIENT"
    UPDATE_CLIENT = "UPDATE_CLIENT"
    CREATE_LOAN = "CREATE_LOAN"
    CREATE_AND_DISBURSE_LOAN = "CREATE_AND_DISBURSE_LOAN"
    DISBURSE_LOAN = "DISBURSE_LOAN"
    UPDATE_INTEREST_RATE = "UPDATE_INTEREST_RATE"
    RECORD_PAYMENT = "RECORD_PAYMENT"
    COMPLETE_LOAN = "COMPLETE_LOAN"


class AuditMode(Enum):
    BEST_EFFORT = "best_effort"
    STRICT = "strict"


# Snapshot schemas, one pair per action

class ClientSnapshot(BaseModel):
    full_name: str
    phone_number: str
    address: str
    id_card: str
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    guarantor_name: Optional[str] = None
    guarantor_phone: Optional[str] = None
    guarantor_address: Optional[str] = None


class FieldChange(BaseModel):
    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None


class ClientChangeSet(BaseModel):
    client_name: str
    changes: List[FieldChange]


class LoanCreatedSnapshot(BaseModel):
    client_id: str
    loan_amount: Decimal
    interest_amount: Decimal
    interest_rate: Decimal
    total_due: Decimal
    installment_amount: Decimal
    payment_count: int
    payment_plan: str
    duration: str
    status: str
    repayment_start_date: Optional[date] = None


class LoanStatusSnapshot(BaseModel):
    status: str
    disbursed_date: Optional[datetime] = None
    disbursed_by_name: Optional[str] = None
    next_payment_date: Optional[date] = None


class InterestRateSnapshot(BaseModel):
    interest_rate: Decimal
    total_due: Decimal
    loan_amount: Optional[Decimal] = None
    installment_amount: Optional[Decimal] = None


class LoanBalanceSnapshot(BaseModel):
    status: str
    total_paid: Decimal
    next_payment_date: Optional[date] = None


class PaymentSnapshot(BaseModel):
    loan_id: str
    amount: Decimal
    payment_date: date
    account_type: Optional[str] = None
    client_name: Optional[str] = None
    total_paid: Decimal
    balance: Decimal
    completed: bool
    next_payment_date: Optional[date] = None


AUDIT_SCHEMAS: Dict[AuditAction, Tuple[Optional[Type[BaseModel]], Optional[Type[BaseModel]]]] = {
    AuditAction.CREATE_CLIENT: (None, ClientSnapshot),
    AuditAction.UPDATE_CLIENT: (ClientChangeSet, ClientChangeSet),
    AuditAction.CREATE_LOAN: (None, LoanCreatedSnapshot),
    AuditAction.CREATE_AND_DISBURSE_LOAN: (None, LoanCreatedSnapshot),
    AuditAction.DISBURSE_LOAN: (LoanStatusSnapshot, LoanStatusSnapshot),
    AuditAction.UPDATE_INTEREST_RATE: (InterestRateSnapshot, InterestRateSnapshot),
    AuditAction.RECORD_PAYMENT: (LoanBalanceSnapshot, PaymentSnapshot),
    AuditAction.COMPLETE_LOAN: (LoanBalanceSnapshot, PaymentSnapshot),
}

Snapshot = Union[BaseModel, Dict[str, Any], None]


def _dump(schema: Optional[Type[BaseModel]], data: Snapshot, side: str) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    if schema is None:
        raise ValueError(f"This action takes no {side} snapshot")
    model = data if isinstance(data, schema) else schema.model_validate(
        data.model_dump() if isinstance(data, BaseModel) else data
    )
    return model.model_dump(mode="json", exclude_none=True)


@dataclass
class AuditEntry(StorageRecord):
    """
    Immutable audit entry, chained to its predecessor by SHA-256
    """
    user_id: str
    user_name: str
    user_role: str
    action: AuditAction
    table_name: str
    record_id: str
    old_data: Optional[Dict[str, Any]]
    new_data: Optional[Dict[str, Any]]
    sequence: int = 0
    previous_hash: str = ""
    current_hash: str = ""

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_role": self.user_role,
            "action": self.action.value,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "old_data": self.old_data,
            "new_data": self.new_data,
            "sequence": self.sequence,
            "previous_hash": self.previous_hash,
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(json_data.encode("utf-8")).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def snapshots(self) -> Tuple[Optional[BaseModel], Optional[BaseModel]]:
        """Parse old_data/new_data into the typed schemas for this action"""
        old_schema, new_schema = AUDIT_SCHEMAS[self.action]
        old = old_schema.model_validate(self.old_data) if old_schema and self.old_data else None
        new = new_schema.model_validate(self.new_data) if new_schema and self.new_data else None
        return old, new

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(
            id=data["id"],
            created_at=cls.parse_datetime(data["created_at"]),
            updated_at=cls.parse_datetime(data["updated_at"]),
            user_id=data["user_id"],
            user_name=data["user_name"],
            user_role=data["user_role"],
            action=AuditAction(data["action"]),
            table_name=data["table_name"],
            record_id=data["record_id"],
            old_data=data.get("old_data"),
            new_data=data.get("new_data"),
            sequence=data.get("sequence", 0),
            previous_hash=data.get("previous_hash", ""),
            current_hash=data.get("current_hash", ""),
        )


def interest_change(entry: AuditEntry) -> Dict[str, Decimal]:
    """
    Interest amounts before and after an UPDATE_INTEREST_RATE entry.

    Uses the recorded principal when the snapshot carries it, otherwise
    falls back to backing the principal out of rate and total.
    """
    if entry.action != AuditAction.UPDATE_INTEREST_RATE:
        raise ValueError(f"{entry.action.value} entries carry no interest change")
    old, new = entry.snapshots()
    old_interest = interest_from_snapshot(old.total_due, old.interest_rate, old.loan_amount)
    new_interest = interest_from_snapshot(new.total_due, new.interest_rate, new.loan_amount)
    return {
        "old_interest": old_interest,
        "new_interest": new_interest,
        "delta": new_interest - old_interest,
    }


class AuditTrail:
    """
    Hash-chained audit trail over the `audit_logs` table
    """

    def __init__(self, storage: StorageInterface, mode: Union[str, AuditMode] = AuditMode.BEST_EFFORT,
                 table_name: str = "audit_logs"):
        self.storage = storage
        self.mode = AuditMode(mode)
        self.table_name = table_name
        self._lock = threading.Lock()

    def _chain_head(self) -> Tuple[int, str]:
        """Sequence number and hash of the most recent entry"""
        latest = self.storage.find(self.table_name, {}, order_by="sequence", descending=True, limit=1)
        if not latest:
            return 0, ""
        return latest[0].get("sequence", 0), latest[0].get("current_hash", "")

    def record(
        self,
        actor: Actor,
        action: AuditAction,
        table_name: str,
        record_id: str,
        old_data: Snapshot = None,
        new_data: Snapshot = None
    ) -> Optional[AuditEntry]:
        """
        Append one audit entry for a logical operation.

        Returns:
            The entry, or None if the write failed in best-effort mode

        Raises:
            DependencyError: If the write failed in strict mode
        """
        try:
            old_schema, new_schema = AUDIT_SCHEMAS[action]
            old_dump = _dump(old_schema, old_data, "old")
            new_dump = _dump(new_schema, new_data, "new")

            with self._lock:
                now = datetime.now(timezone.utc)
                last_sequence, last_hash = self._chain_head()
                entry = AuditEntry(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    user_id=actor.id,
                    user_name=actor.name,
                    user_role=actor.role.value,
                    action=action,
                    table_name=table_name,
                    record_id=record_id,
                    old_data=old_dump,
                    new_data=new_dump,
                    sequence=last_sequence + 1,
                    previous_hash=last_hash,
                )
                entry.current_hash = entry.calculate_hash()
                self.storage.save(self.table_name, entry.id, entry.to_dict())
            return entry
        except Exception as e:
            log_action(
                logger, "error", f"Audit write failed: {e}",
                user_id=actor.id, action=action.value, resource=table_name,
                entity_id=record_id, exc_info=True
            )
            if self.mode == AuditMode.STRICT:
                raise DependencyError(cause=e)
            return None

    def list_entries(
        self,
        actor: Actor,
        action: Optional[AuditAction] = None,
        limit: Optional[int] = None
    ) -> List[AuditEntry]:
        """Newest-first audit entries; admin only"""
        require_admin(actor, "view the audit log")
        filters = {"action": action.value} if action else {}
        rows = self.storage.find(self.table_name, filters, order_by="sequence",
                                 descending=True, limit=limit)
        return [AuditEntry.from_dict(row) for row in rows]

    def entries_for_record(self, table_name: str, record_id: str) -> List[AuditEntry]:
        """Oldest-first history of a single record"""
        rows = self.storage.find(self.table_name, {"table_name": table_name, "record_id": record_id},
                                 order_by="sequence")
        return [AuditEntry.from_dict(row) for row in rows]

    def count_entries(self) -> int:
        return self.storage.count(self.table_name)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every entry's hash and the continuity of the chain

        Returns:
            Dictionary with valid flag, totals and the offending entry ids
        """
        result = {"valid": True, "total_entries": 0, "hash_errors": [], "chain_breaks": []}
        rows = self.storage.find(self.table_name, {}, order_by="sequence")
        entries = [AuditEntry.from_dict(row) for row in rows]
        result["total_entries"] = len(entries)

        previous_hash = ""
        for position, entry in enumerate(entries):
            if not entry.verify_hash():
                result["valid"] = False
                result["hash_errors"].append({"entry_id": entry.id, "position": position})
            if entry.previous_hash != previous_hash:
                result["valid"] = False
                result["chain_breaks"].append({"entry_id": entry.id, "position": position})
            previous_hash = entry.current_hash

        return result
