"""
Client Management Module

Borrower registration and edits. A client carries contact details, an
identity document, an optional bank account (with the account name
confirmed by the bank) and an optional guarantor. Edits are audited as one
UPDATE_CLIENT entry listing every field that changed.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from .actors import Actor
from .audit import AuditTrail, AuditAction, ClientChangeSet, ClientSnapshot, FieldChange
from .errors import DependencyError, MissingField, NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord
from .verification import PaystackVerifier, validate_account_number, bank_code_for

REQUIRED_FIELDS = ("full_name", "phone_number", "address", "id_card")
BANK_FIELDS = ("account_number", "bank_name", "account_name")
GUARANTOR_FIELDS = ("guarantor_name", "guarantor_phone", "guarantor_address")
TRACKED_FIELDS = REQUIRED_FIELDS + BANK_FIELDS + GUARANTOR_FIELDS
MISSING_VALUE = "N/A"


@dataclass
class Client(StorageRecord):
    """Borrower profile"""
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
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    last_modified_by: Optional[str] = None
    last_modified_by_name: Optional[str] = None
    last_modified_at: Optional[datetime] = None

    @property
    def has_bank_account(self) -> bool:
        return bool(self.account_number and self.bank_name)

    @property
    def has_guarantor(self) -> bool:
        return bool(self.guarantor_name)

    def snapshot(self) -> ClientSnapshot:
        return ClientSnapshot(**{name: getattr(self, name) for name in TRACKED_FIELDS})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Client":
        values = dict(data)
        values["created_at"] = cls.parse_datetime(values["created_at"])
        values["updated_at"] = cls.parse_datetime(values["updated_at"])
        values["last_modified_at"] = cls.parse_datetime(values.get("last_modified_at"))
        return cls(**values)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _validate(values: Dict[str, Optional[str]]) -> None:
    for name in REQUIRED_FIELDS:
        if not values.get(name):
            raise MissingField(f"{name.replace('_', ' ').capitalize()} is required")

    if values.get("account_number") or values.get("bank_name"):
        validate_account_number(values.get("account_number"))
        bank_code_for(values.get("bank_name"))

    given = [name for name in GUARANTOR_FIELDS if values.get(name)]
    if given and len(given) != len(GUARANTOR_FIELDS):
        missing = [name for name in GUARANTOR_FIELDS if name not in given]
        raise MissingField(f"Incomplete guarantor details, missing: {', '.join(missing)}")


class ClientManager:
    """
    Registers and edits clients, verifying bank accounts when a verifier is configured
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 verifier: Optional[PaystackVerifier] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.verifier = verifier
        self.table_name = "clients"

    def _verified_name(self, values: Dict[str, Optional[str]]) -> Optional[str]:
        if self.verifier and values.get("account_number"):
            return self.verifier.resolve_account(values["account_number"], values["bank_name"]).account_name
        return values.get("account_name")

    def create_client(
        self,
        actor: Actor,
        full_name: str,
        phone_number: str,
        address: str,
        id_card: str,
        account_number: Optional[str] = None,
        bank_name: Optional[str] = None,
        account_name: Optional[str] = None,
        guarantor_name: Optional[str] = None,
        guarantor_phone: Optional[str] = None,
        guarantor_address: Optional[str] = None
    ) -> Client:
        """
        Register a new client

        Raises:
            MissingField: A required field or part of the guarantor is missing
            ValidationError: Malformed account number or unknown bank
        """
        values = {name: _clean(value) for name, value in {
            "full_name": full_name,
            "phone_number": phone_number,
            "address": address,
            "id_card": id_card,
            "account_number": account_number,
            "bank_name": bank_name,
            "account_name": account_name,
            "guarantor_name": guarantor_name,
            "guarantor_phone": guarantor_phone,
            "guarantor_address": guarantor_address,
        }.items()}
        _validate(values)
        values["account_name"] = self._verified_name(values)

        now = datetime.now(timezone.utc)
        client = Client(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            created_by=actor.id,
            created_by_name=actor.name,
            **values
        )
        self.storage.save(self.table_name, client.id, client.to_dict())

        try:
            self.audit_trail.record(
                actor, AuditAction.CREATE_CLIENT, self.table_name, client.id,
                new_data=client.snapshot()
            )
        except DependencyError:
            # Strict audit mode only
            self.storage.delete(self.table_name, client.id)
            raise
        return client

    def update_client(self, actor: Actor, client_id: str, **updates: Optional[str]) -> Client:
        """
        Edit contact, banking or guarantor fields

        Only fields that actually change are recorded. Changing the account
        number or bank re-verifies the account name.
        """
        unknown = set(updates) - set(TRACKED_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        client = self.get_client(client_id)
        original = {name: getattr(client, name) for name in TRACKED_FIELDS}
        values = dict(original)
        values.update({name: _clean(value) for name, value in updates.items()})
        _validate(values)

        account_changed = (values["account_number"] != original["account_number"]
                           or values["bank_name"] != original["bank_name"])
        if account_changed and "account_name" not in updates:
            values["account_name"] = self._verified_name(values) if values["account_number"] else None

        changes: List[FieldChange] = [
            FieldChange(
                field=name,
                old_value=original[name] or MISSING_VALUE,
                new_value=values[name] or MISSING_VALUE,
            )
            for name in TRACKED_FIELDS
            if values[name] != original[name]
        ]
        if not changes:
            return client

        previous = client.to_dict()
        now = datetime.now(timezone.utc)
        for name, value in values.items():
            setattr(client, name, value)
        client.updated_at = now
        client.last_modified_by = actor.id
        client.last_modified_by_name = actor.name
        client.last_modified_at = now
        self.storage.save(self.table_name, client.id, client.to_dict())

        try:
            self.audit_trail.record(
                actor, AuditAction.UPDATE_CLIENT, self.table_name, client.id,
                old_data=ClientChangeSet(
                    client_name=original["full_name"],
                    changes=[FieldChange(field=c.field, old_value=c.old_value) for c in changes],
                ),
                new_data=ClientChangeSet(
                    client_name=client.full_name,
                    changes=[FieldChange(field=c.field, new_value=c.new_value) for c in changes],
                ),
            )
        except DependencyError:
            self.storage.save(self.table_name, client.id, previous)
            raise
        return client

    def get_client(self, client_id: str) -> Client:
        data = self.storage.load(self.table_name, client_id)
        if not data:
            raise NotFoundError(f"Client {client_id} not found")
        return Client.from_dict(data)

    def find_client(self, client_id: str) -> Optional[Client]:
        data = self.storage.load(self.table_name, client_id)
        return Client.from_dict(data) if data else None

    def list_clients(self, order_by: str = "created_at", limit: Optional[int] = None) -> List[Client]:
        """Clients newest first, or alphabetically with order_by="full_name" """
        descending = order_by == "created_at"
        rows = self.storage.find(self.table_name, {}, order_by=order_by,
                                 descending=descending, limit=limit)
        return [Client.from_dict(row) for row in rows]

    def count_clients(self) -> int:
        return self.storage.count(self.table_name)
