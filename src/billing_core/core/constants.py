from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

ALL_SERVICES = "all_services"

# Sub-cent precision: per-unit provider costs are often fractions of a cent.
MONEY_QUANTUM = Decimal("0.0001")

DEFAULT_PRIORITY_WEIGHT = 10


class ServiceType(StrEnum):
    LEI_ISSUANCE = "lei_issuance"
    VLEI_ISSUANCE = "vlei_issuance"
    KYB_VERIFICATION = "kyb_verification"
    AML_SCREENING = "aml_screening"
    FACIAL_VERIFICATION = "facial_verification"


class ProviderStatus(StrEnum):
    ACTIVE = "active"
    DEGRADED = "degraded"
    OFFLINE = "offline"


# Unknown or unset status ranks with offline.
STATUS_RANK: dict[str, int] = {
    ProviderStatus.ACTIVE: 0,
    ProviderStatus.DEGRADED: 1,
    ProviderStatus.OFFLINE: 2,
}


class MarkupScope(StrEnum):
    GLOBAL = "global"
    ORGANIZATION = "organization"


class MarkupType(StrEnum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    BOTH = "both"


class RegionType(StrEnum):
    COUNTRY = "country"
    CONTINENT = "continent"


class CreditType(StrEnum):
    PROMOTIONAL = "promotional"
    REFERRAL = "referral"
    PREPAID = "prepaid"
    USAGE = "usage"


class PriceChangeStatus(StrEnum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReferralStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CREDITED = "credited"


class ModifierKind(StrEnum):
    PROGRESSIVE_TIER = "progressive_tier"
    REGIONAL = "regional"
    PROMOTIONAL = "promotional"
    ORGANIZATION_DISCOUNT = "organization_discount"
    MULTI_YEAR = "multi_year"
    WHITE_LABEL = "white_label"
