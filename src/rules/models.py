from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator


class TrendRules(BaseModel):
    min_days: int = Field(default=1, ge=1)
    max_days: int = Field(default=365, ge=1)
    default_days: int = 30

    @model_validator(mode="after")
    def check_bounds(self) -> "TrendRules":
        if not self.min_days <= self.default_days <= self.max_days:
            raise ValueError("trend.default_days must lie within [min_days, max_days]")
        return self


class TopPagesRules(BaseModel):
    min_limit: int = Field(default=1, ge=1)
    max_limit: int = Field(default=100, ge=1)
    default_limit: int = 10

    @model_validator(mode="after")
    def check_bounds(self) -> "TopPagesRules":
        if not self.min_limit <= self.default_limit <= self.max_limit:
            raise ValueError("top_pages.default_limit must lie within [min_limit, max_limit]")
        return self


class SessionRules(BaseModel):
    scheme: Literal["literal", "bucketed"] = "literal"
    bucket_minutes: int = Field(default=30, ge=1)


class AnalyticsRules(BaseModel):
    timezone: str = "UTC"
    new_visitor_window_days: int = Field(default=30, ge=1)
    default_range_days: int = Field(default=30, ge=1)
    trend: TrendRules = Field(default_factory=TrendRules)
    top_pages: TopPagesRules = Field(default_factory=TopPagesRules)
    error_status_threshold: int = Field(default=400, ge=100, le=599)
    session: SessionRules = Field(default_factory=SessionRules)
    derive_traffic_source: bool = False
    query_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value


class TrackingRules(BaseModel):
    enabled: bool = True
    exclude_paths: list[str] = Field(
        default_factory=lambda: ["/health", "/docs", "/openapi.json", "/redoc", "/api/visit-stats"]
    )


class LoggingRules(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Rules(BaseModel):
    analytics: AnalyticsRules
    tracking: TrackingRules = Field(default_factory=TrackingRules)
    logging: LoggingRules = Field(default_factory=LoggingRules)
