"""
System container and authentication dependencies
"""

from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional
import logging

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..actors import Actor, Role, UserDirectory
from ..alerts import AlertClassifier
from ..audit import AuditTrail
from ..clients import ClientManager
from ..config import MicrofinanceConfig, get_config
from ..errors import AuthenticationError
from ..interest import InterestRateReviser
from ..loans import LoanManager
from ..logging_config import log_action
from ..reporting import ReportingEngine
from ..repayments import RepaymentRecorder
from ..storage import StorageInterface, create_storage
from ..verification import PaystackVerifier

logger = logging.getLogger("microfinance.api")

DEV_USER_ID = "test_user"


class MicrofinanceSystem:
    """Loan system with all components initialized"""

    def __init__(self, settings: Optional[MicrofinanceConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.settings = settings or get_config()

        self.storage = storage or create_storage(self.settings.database_url)
        self.audit_trail = AuditTrail(self.storage, mode=self.settings.audit_mode)
        self.user_directory = UserDirectory(self.storage)

        self.verifier = self._create_verifier()
        self.client_manager = ClientManager(self.storage, self.audit_trail, verifier=self.verifier)
        self.loan_manager = LoanManager(self.storage, self.audit_trail)
        self.repayment_recorder = RepaymentRecorder(
            self.storage, self.loan_manager, self.audit_trail,
            max_retries=self.settings.payment_update_retries,
            advance_schedule=self.settings.advance_schedule_on_payment
        )
        self.interest_reviser = InterestRateReviser(
            self.loan_manager, self.audit_trail,
            max_retries=self.settings.payment_update_retries
        )
        self.alert_classifier = AlertClassifier(self.loan_manager, self.settings.alert_window_days)
        self.reporting_engine = ReportingEngine(
            self.loan_manager, self.client_manager, self.alert_classifier
        )

    def _create_verifier(self) -> Optional[PaystackVerifier]:
        """Create the account verifier if a Paystack key is configured"""
        if not self.settings.paystack_secret_key:
            return None
        return PaystackVerifier(
            secret_key=self.settings.paystack_secret_key,
            base_url=self.settings.paystack_base_url,
            timeout=self.settings.paystack_timeout,
        )

    def close(self):
        if self.verifier:
            self.verifier.close()
        self.storage.close()


# Global system instance, created on first use
system: Optional[MicrofinanceSystem] = None


def get_system() -> MicrofinanceSystem:
    global system
    if system is None:
        system = MicrofinanceSystem()
    return system


def set_system(new_system: Optional[MicrofinanceSystem]) -> None:
    """Swap the global system (tests, embedding)"""
    global system
    system = new_system


# JWT Security
security = HTTPBearer(auto_error=False)


def issue_token(user_id: str, settings: MicrofinanceConfig, email: Optional[str] = None,
                expires_in: timedelta = timedelta(hours=24)) -> str:
    """Sign a bearer token the way the identity provider does"""
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: MicrofinanceSystem = Depends(get_system)
) -> Dict[str, Any]:
    """Validate the bearer token and return its {sub, email} claims"""
    settings = system.settings
    if not settings.auth_enabled:
        return {"sub": DEV_USER_ID}

    if not credentials:
        raise AuthenticationError("Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret,
                             algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        log_action(logger, "warning", "Rejected invalid token", action="authenticate", resource="auth")
        raise AuthenticationError("Invalid token")

    if not payload.get("sub"):
        raise AuthenticationError("Invalid token")
    return payload


def get_actor(
    identity: Dict[str, Any] = Depends(get_identity),
    system: MicrofinanceSystem = Depends(get_system)
) -> Actor:
    """Resolve the calling user to an actor with a name and role"""
    if not system.settings.auth_enabled:
        # Auth disabled (local runs and tests): act as an admin
        return Actor(id=DEV_USER_ID, name="Test User", role=Role.ADMIN)
    return system.user_directory.resolve(identity["sub"])
