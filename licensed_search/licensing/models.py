"""
Licensing data model

Records exchanged between the ledger clients, the licensed fetch engine and
the search orchestrator. All of them are plain dataclasses with a
``to_dict()`` producing the JSON shape returned to MCP clients; optional
fields that are unset are omitted from that shape.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from ..errors import UpstreamError

LicenseAction = Literal["allow", "deny", "unknown"]
LicenseStage = Literal["infer", "embed", "tune", "train"]
Distribution = Literal["private", "public"]
PaymentMethod = Literal["account_balance", "x402"]

AI_LICENSE_TYPE = "ai-license"


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class LicenseVerdict:
    """License status of one URL as reported by the ledger"""
    url: str
    found: bool
    action: LicenseAction
    price: Optional[float] = None
    payto: Optional[str] = None
    license_version_id: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def unknown(cls, url: str, error: Optional[str] = None) -> "LicenseVerdict":
        return cls(url=url, found=False, action="unknown", error=error)

    @classmethod
    def from_record(cls, url: str, record: Dict[str, Any]) -> "LicenseVerdict":
        """Map a ledger license record onto a verdict."""
        opt = record.get("opt_in_status")
        if opt == "opt-in":
            action = "allow"
        elif opt == "opt-out":
            action = "deny"
        else:
            action = "unknown"

        return cls(
            url=url,
            found=opt in ("opt-in", "opt-out"),
            action=action,
            price=record.get("rate_per_token"),
            payto=record.get("wallet_id"),
            license_version_id=record.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "url": self.url,
            "found": self.found,
            "action": self.action,
            "price": self.price,
            "payto": self.payto,
            "license_version_id": self.license_version_id,
            "error": self.error,
        })


@dataclass
class AcquisitionGrant:
    """Signed, time-limited licensed URL issued by the ledger"""
    licensed_url: str
    license_version_id: Optional[int] = None
    license_sig: Optional[str] = None
    expires_at: Optional[str] = None
    cost: Optional[float] = None
    currency: Optional[str] = None
    stage: Optional[str] = None
    distribution: Optional[str] = None
    estimated_tokens: Optional[int] = None
    rate_per_1k_tokens: Optional[float] = None
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, data: Any) -> "AcquisitionGrant":
        if not isinstance(data, dict) or not data.get("licensed_url"):
            raise UpstreamError("ledger", "acquisition response has no licensed_url")

        return cls(
            licensed_url=data["licensed_url"],
            license_version_id=data.get("license_version_id"),
            license_sig=data.get("license_sig"),
            expires_at=data.get("expires_at"),
            cost=data.get("cost"),
            currency=data.get("currency"),
            stage=data.get("stage"),
            distribution=data.get("distribution"),
            estimated_tokens=data.get("estimated_tokens"),
            rate_per_1k_tokens=data.get("rate_per_1k_tokens"),
            status=data.get("license_status", data.get("status")),
            raw=dict(data),
        )


@dataclass(frozen=True)
class X402Hints:
    """Payment hints advertised by a publisher alongside a 402 response"""
    price: Optional[str] = None
    payto: Optional[str] = None
    stage: Optional[str] = None
    distribution: Optional[str] = None
    facilitator_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "payto": self.payto,
            "stage": self.stage,
            "distribution": self.distribution,
            "facilitator_url": self.facilitator_url,
        }


@dataclass(frozen=True)
class AcquireOutcome:
    """Grant details attached to a fetch result after a successful acquisition"""
    licensed_url: str
    cost: Optional[float] = None
    currency: Optional[str] = None
    expires_at: Optional[str] = None
    license_version_id: Optional[int] = None
    license_sig: Optional[str] = None

    @classmethod
    def from_grant(cls, grant: AcquisitionGrant) -> "AcquireOutcome":
        return cls(
            licensed_url=grant.licensed_url,
            cost=grant.cost,
            currency=grant.currency,
            expires_at=grant.expires_at,
            license_version_id=grant.license_version_id,
            license_sig=grant.license_sig,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "licensed_url": self.licensed_url,
            "cost": self.cost,
            "currency": self.currency,
            "expires_at": self.expires_at,
            "license_version_id": self.license_version_id,
            "license_sig": self.license_sig,
        }


@dataclass
class LicensedFetchResult:
    """Outcome of one licensed fetch, whichever path was taken"""
    requested_url: str
    final_url: str
    http_status: int
    content_type: Optional[str] = None
    content_text: Optional[str] = None
    payment_attempted: bool = False
    payment_required: bool = False
    x402_hints: Optional[X402Hints] = None
    acquire_outcome: Optional[AcquireOutcome] = None
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.http_status < 300

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "requested_url": self.requested_url,
            "final_url": self.final_url,
            "status": self.http_status,
            "content_type": self.content_type,
            "content_text": self.content_text,
            "payment_attempted": self.payment_attempted,
            "payment_required": self.payment_required,
        }
        if self.x402_hints is not None:
            data["x402_hints"] = self.x402_hints.to_dict()
        if self.acquire_outcome is not None:
            data["acquire_outcome"] = self.acquire_outcome.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class UsageHit:
    url: str
    tokens: int

    def __post_init__(self):
        if self.tokens <= 0:
            raise ValueError(f"usage hit for {self.url} must have tokens > 0, got {self.tokens}")

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "tokens": self.tokens}


@dataclass(frozen=True)
class UsageBatch:
    generation_id: str
    hits: List[UsageHit]

    @classmethod
    def new(cls, hits: List[UsageHit]) -> "UsageBatch":
        return cls(generation_id=str(uuid.uuid4()), hits=list(hits))

    def to_payload(self) -> Dict[str, Any]:
        """Body of the ledger usage-log call"""
        return {"gen_id": self.generation_id, "hits": [hit.to_dict() for hit in self.hits]}
