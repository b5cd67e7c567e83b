"""
Bank Account Verification Client

REST client for Paystack's account-resolution endpoint. Given a NUBAN
account number and a bank, returns the registered account name so client
records carry a verified payee name.
"""

import httpx
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

from .errors import DependencyError, MissingField, ValidationError

logger = logging.getLogger("microfinance.verification")

# Nigerian bank codes accepted by Paystack
BANK_CODES = {
    "access": "044",
    "gtbank": "058",
    "firstbank": "011",
    "uba": "033",
    "zenith": "057",
    "fidelity": "070",
    "union": "032",
    "sterling": "232",
    "stanbic": "221",
    "fcmb": "214",
    "ecobank": "050",
    "wema": "035",
    "unity": "215",
    "keystone": "082",
    "polaris": "076",
    "providus": "101",
    "kuda": "50211",
    "opay": "999992",
    "palmpay": "999991",
    "moniepoint": "50515",
}

ACCOUNT_NUMBER_PATTERN = re.compile(r"^\d{10}$")
DEFAULT_FAILURE_MESSAGE = "Could not verify account. Please check the account number and bank."


@dataclass(frozen=True)
class VerifiedAccount:
    """Account details confirmed by the bank"""
    account_name: str
    account_number: str
    bank_name: str
    bank_code: str


def validate_account_number(account_number: Optional[str]) -> str:
    if not account_number:
        raise MissingField("Account number is required")
    if not ACCOUNT_NUMBER_PATTERN.match(account_number):
        raise ValidationError("Account number must be 10 digits")
    return account_number


def bank_code_for(bank_name: Optional[str]) -> str:
    if not bank_name:
        raise MissingField("Bank name is required")
    code = BANK_CODES.get(bank_name.lower())
    if not code:
        raise ValidationError("Invalid bank selected")
    return code


class PaystackVerifier:
    """Resolves account names through Paystack"""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0
    ):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout)

    def resolve_account(self, account_number: str, bank_name: str) -> VerifiedAccount:
        """
        Resolve the registered name of a bank account

        Raises:
            ValidationError: Bad input, or the bank rejected the account
            DependencyError: Paystack unreachable or returned garbage
        """
        account_number = validate_account_number(account_number)
        bank_code = bank_code_for(bank_name)

        start = time.time()
        try:
            response = self._client.get(
                f"{self.base_url}/bank/resolve",
                params={"account_number": account_number, "bank_code": bank_code},
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Content-Type": "application/json",
                },
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Paystack account resolution failed for bank {bank_code}: {e}")
            raise DependencyError(cause=e)

        latency_ms = (time.time() - start) * 1000
        logger.debug(f"Paystack resolve returned {response.status_code} in {latency_ms:.0f}ms")

        if response.status_code != 200 or not data.get("status"):
            raise ValidationError(data.get("message") or DEFAULT_FAILURE_MESSAGE)

        return VerifiedAccount(
            account_name=data["data"]["account_name"],
            account_number=data["data"].get("account_number", account_number),
            bank_name=bank_name.lower(),
            bank_code=bank_code,
        )

    def close(self):
        """Close the HTTP client"""
        self._client.close()
