from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

# Domain models

class Environment(str, Enum):
    PROD = "prod"
    STAGING = "staging"
    DEV = "dev"

_ENVIRONMENT_ALIASES = {
    "production": "prod",
    "development": "dev",
}

class AuthState(str, Enum):
    UNVALIDATED = "unvalidated"
    VALIDATED = "validated"
    FAILED = "failed"

class DeploymentConfig(BaseModel):
    """Deployment environment and local-dev bridge address."""
    environment: Environment = Environment.PROD
    bridge_ip: str = ""
    bridge_port: str = ""

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            value = _ENVIRONMENT_ALIASES.get(value, value)
            if value not in {e.value for e in Environment}:
                # Unknown tags are treated as production
                return Environment.PROD
        return value

    @property
    def bridge_url(self) -> str:
        if not self.bridge_ip:
            return ""
        url = f"http://{self.bridge_ip}"
        return f"{url}:{self.bridge_port}" if self.bridge_port else url

    @classmethod
    def from_settings(cls, settings) -> "DeploymentConfig":
        return cls(
            environment=settings.DEPLOYMENT_ENV,
            bridge_ip=settings.DOCKER_BRIDGE_IP,
            bridge_port=settings.UPDATE_CONTAINER_PORT,
        )

class RequestContext(BaseModel):
    """The host request that triggered an entitlement check."""
    host: str = ""
    action: str = ""

class ProviderEndpoint(BaseModel):
    origin: str = ""
    api_endpoint: str = ""
    seller_site: str = ""

class ResolvedProvider(BaseModel):
    provider: str
    origin: str
    endpoint: str
    seller_site: str

class EntitlementRecord(BaseModel):
    product_id: str
    verified: bool = False
    error_message: str = ""
    provider: str
    origin: str = ""
    endpoint: str = ""
    seller_site: str = ""
    licensed_item_meta: Optional[Dict[str, Any]] = None
    last_checked_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _verified_has_no_error(self):
        if self.verified and self.error_message:
            raise ValueError("a verified record cannot carry an error message")
        return self

    @property
    def state(self) -> AuthState:
        if self.verified:
            return AuthState.VALIDATED
        if self.last_checked_at is None and not self.error_message:
            return AuthState.UNVALIDATED
        return AuthState.FAILED

class ValidationSuccess(BaseModel):
    kind: Literal["success"] = "success"
    licensed_item_meta: Optional[Dict[str, Any]] = None
    # True when the remote authority was not conclusively reached
    fail_open: bool = False

class ValidationFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    message: str

ValidationOutcome = Annotated[
    Union[ValidationSuccess, ValidationFailure], Field(discriminator="kind")
]

class ValidationAttempt(BaseModel):
    product_id: str
    provider: str
    result: str  # success, failure, fail_open
    error_message: Optional[str] = None
    attempted_at: datetime

class ProviderChoice(BaseModel):
    provider: str
    sellerSite: str
    selected: bool

# API schemas

class EntitlementStatusResponse(BaseModel):
    productId: str
    entitled: bool
    state: AuthState
    provider: str
    sellerSite: str
    failureMessage: str = ""
    lastCheckedAt: Optional[str] = None
    licensedItemMeta: Optional[Dict[str, Any]] = None

class ProviderSwitchRequest(BaseModel):
    provider: str

class NoticeResponse(BaseModel):
    show: bool
    message: Optional[str] = None

class ProviderChoicesResponse(BaseModel):
    choices: List[ProviderChoice]

class ValidationAttemptsResponse(BaseModel):
    attempts: List[ValidationAttempt]

class DeactivateResponse(BaseModel):
    success: bool
    scheduled: bool

class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    productId: Optional[str] = None
    recurringCheckArmed: Optional[bool] = None
