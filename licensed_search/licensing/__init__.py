"""
Licensed fetch protocol and Copyright.sh ledger clients

Ce package contient:
- LedgerService: annuaire de licences, acquisition et journal d'usage
- LicensedFetcher: machine à états fetch direct / x402 / retry licencié
- VerdictCache / NullCache: cache expirant des verdicts de licence
"""

from .cache import NullCache, VerdictCache
from .fetcher import FetchState, LicensedFetcher
from .ledger import LedgerService
from .models import (
    AcquireOutcome,
    AcquisitionGrant,
    LicensedFetchResult,
    LicenseVerdict,
    UsageBatch,
    UsageHit,
    X402Hints,
)

__all__ = [
    "NullCache",
    "VerdictCache",
    "FetchState",
    "LicensedFetcher",
    "LedgerService",
    "AcquireOutcome",
    "AcquisitionGrant",
    "LicensedFetchResult",
    "LicenseVerdict",
    "UsageBatch",
    "UsageHit",
    "X402Hints",
]
