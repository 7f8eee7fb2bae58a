"""Data models for party-size based fee tiers."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from irutomo.i18n import normalize_locale


class PlanName(str, Enum):
    """Fee tier names."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class FeeSource(str, Enum):
    """Where a resolved fee came from."""

    PLAN = "plan"
    EXPLICIT = "explicit"
    OFFLINE = "offline"


_DEFAULT_DESCRIPTIONS: dict[str, dict[str, str]] = {
    "small": {
        "ko": "기본 예약 서비스",
        "ja": "基本予約サービス",
        "en": "Basic reservation service",
    },
    "medium": {
        "ko": "그룹 예약 서비스",
        "ja": "グループ予約サービス",
        "en": "Group reservation service",
    },
    "large": {
        "ko": "대규모 그룹 전용 서비스",
        "ja": "大人数専用サービス",
        "en": "Large group exclusive service",
    },
}


class PricePlan(BaseModel):
    """A row of the ``price_plans`` table."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., description="Plan ID")
    name: PlanName = Field(..., description="Tier name")
    min_party_size: int = Field(..., ge=1, description="Smallest party in the tier")
    max_party_size: int = Field(..., ge=1, description="Largest party in the tier")
    amount: int = Field(..., gt=0, description="Fee in JPY (no minor unit)")
    currency: str = Field(default="JPY", description="Currency code")
    is_active: bool = Field(default=True, description="Whether the plan is offered")
    description_ja: str | None = None
    description_ko: str | None = None
    description_en: str | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "PricePlan":
        if self.min_party_size > self.max_party_size:
            msg = "min_party_size must not exceed max_party_size"
            raise ValueError(msg)
        return self

    def covers(self, party_size: int) -> bool:
        """Check if the party size falls inside this tier."""
        return self.min_party_size <= party_size <= self.max_party_size

    def describe(self, locale: str | None = None) -> str:
        """Localized description, falling back to Japanese then a built-in text."""
        loc = normalize_locale(locale)
        localized = {
            "ko": self.description_ko,
            "en": self.description_en,
            "ja": self.description_ja,
        }.get(loc)
        if localized:
            return localized
        if self.description_ja:
            return self.description_ja
        return _DEFAULT_DESCRIPTIONS.get(self.name.value, {}).get(loc, "")


class FeeQuote(BaseModel):
    """The fee that the next payment step must collect."""

    model_config = ConfigDict(frozen=True)

    amount: int = Field(..., gt=0, description="Fee in JPY")
    plan_name: str = Field(..., description="Tier name")
    plan_id: str | None = Field(None, description="Backing plan ID, if any")
    currency: str = Field(default="JPY", description="Currency code")
    source: FeeSource = Field(default=FeeSource.OFFLINE, description="Resolution path")
