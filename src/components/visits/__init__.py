"""
Visits component - Request recording and visit analytics.
"""

from ._aggregate import (
    AggregationEngine,
    Calendar,
    CancelToken,
    Deadline,
    NeverCancelled,
    growth_rate,
    percentage,
    sort_counts,
)
from ._attrib import (
    AttributionConfig,
    TrafficSource,
    UTMParams,
    classify_traffic_source,
    parse_referer_host,
    parse_utm_params,
)
from ._classify import (
    ClassifierConfig,
    UAClassification,
    classify_browser,
    classify_device,
    classify_operating_system,
    classify_user_agent,
)
from ._identity import (
    IdentityConfig,
    IdentityResolver,
    SessionScheme,
    VisitorIdentity,
    extract_client_ip,
    generate_session_id,
    is_new_visitor,
)
from ._impl import (
    DefaultTimePort,
    VisitQueryService,
    VisitRecorder,
    VisitsConfig,
    resolve_window,
    validate_days,
    validate_limit,
)
from ._store import GROUPABLE_FIELDS, InMemoryVisitStore, check_groupable
from .component import (
    run,
    run_breakdown,
    run_browser_stats,
    run_complete_response,
    run_device_stats,
    run_os_stats,
    run_overview,
    run_performance,
    run_realtime,
    run_recent_visits,
    run_record,
    run_session_visits,
    run_top_pages,
    run_traffic_source_stats,
    run_trend,
)
from .models import (
    BreakdownDimension,
    BreakdownOutput,
    CompleteResponseInput,
    CompleteResponseOutput,
    CountItem,
    DailyStats,
    DeviceType,
    OverviewOutput,
    OverviewStats,
    PerformanceOutput,
    QueryBreakdownInput,
    QueryCancelledError,
    QueryOverviewInput,
    QueryPerformanceInput,
    QueryRealtimeInput,
    QueryRecentVisitsInput,
    QuerySessionVisitsInput,
    QueryTopPagesInput,
    QueryTrendInput,
    QueryWindowInput,
    RealtimeOutput,
    RecordVisitInput,
    RecordVisitOutput,
    StoreUnavailableError,
    TimeWindow,
    TopPagesOutput,
    TrendOutput,
    VisitEvent,
    VisitListOutput,
    VisitsError,
    VisitsValidationError,
)
from .ports import CancellationPort, RulesPort, TimePort, VisitStorePort

__all__ = [
    # Entry points
    "run",
    "run_breakdown",
    "run_browser_stats",
    "run_complete_response",
    "run_device_stats",
    "run_os_stats",
    "run_overview",
    "run_performance",
    "run_realtime",
    "run_recent_visits",
    "run_record",
    "run_session_visits",
    "run_top_pages",
    "run_traffic_source_stats",
    "run_trend",
    # Input models
    "CompleteResponseInput",
    "QueryBreakdownInput",
    "QueryOverviewInput",
    "QueryPerformanceInput",
    "QueryRealtimeInput",
    "QueryRecentVisitsInput",
    "QuerySessionVisitsInput",
    "QueryTopPagesInput",
    "QueryTrendInput",
    "QueryWindowInput",
    "RecordVisitInput",
    # Output models
    "BreakdownDimension",
    "BreakdownOutput",
    "CompleteResponseOutput",
    "CountItem",
    "DailyStats",
    "DeviceType",
    "OverviewOutput",
    "OverviewStats",
    "PerformanceOutput",
    "RealtimeOutput",
    "RecordVisitOutput",
    "TimeWindow",
    "TopPagesOutput",
    "TrendOutput",
    "VisitEvent",
    "VisitListOutput",
    "VisitsValidationError",
    # Errors
    "QueryCancelledError",
    "StoreUnavailableError",
    "VisitsError",
    # Ports
    "CancellationPort",
    "RulesPort",
    "TimePort",
    "VisitStorePort",
    # Services
    "AggregationEngine",
    "Calendar",
    "CancelToken",
    "Deadline",
    "DefaultTimePort",
    "IdentityResolver",
    "InMemoryVisitStore",
    "NeverCancelled",
    "VisitQueryService",
    "VisitRecorder",
    # Config
    "AttributionConfig",
    "ClassifierConfig",
    "IdentityConfig",
    "SessionScheme",
    "VisitsConfig",
    # Classification
    "TrafficSource",
    "UAClassification",
    "UTMParams",
    "VisitorIdentity",
    "classify_browser",
    "classify_device",
    "classify_operating_system",
    "classify_traffic_source",
    "classify_user_agent",
    "extract_client_ip",
    "generate_session_id",
    "is_new_visitor",
    "parse_referer_host",
    "parse_utm_params",
    # Helpers
    "GROUPABLE_FIELDS",
    "check_groupable",
    "growth_rate",
    "percentage",
    "resolve_window",
    "sort_counts",
    "validate_days",
    "validate_limit",
]
