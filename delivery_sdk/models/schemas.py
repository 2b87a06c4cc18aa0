"""
Domain models using Pydantic.
All records exchanged with the Delivery and Metrics services, plus the
SDK's own request/response envelopes.

Fields are snake_case in Python and camelCase on the wire:
`model.model_dump(by_alias=True, exclude_none=True)` yields the wire shape.
"""
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for every record that crosses the remote API boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Enums
# =============================================================================


class CohortArm(str, Enum):
    """Outcome of experiment assignment."""

    UNKNOWN_GROUP = "UNKNOWN_GROUP"
    CONTROL = "CONTROL"
    TREATMENT = "TREATMENT"
    TREATMENT1 = "TREATMENT1"
    TREATMENT2 = "TREATMENT2"
    TREATMENT3 = "TREATMENT3"


class ExecutionServer(str, Enum):
    """Where response insertions were produced."""

    UNKNOWN_EXECUTION_SERVER = "UNKNOWN_EXECUTION_SERVER"
    API = "API"
    SDK = "SDK"


class TrafficType(str, Enum):
    UNKNOWN_TRAFFIC_TYPE = "UNKNOWN_TRAFFIC_TYPE"
    PRODUCTION = "PRODUCTION"
    REPLAY = "REPLAY"
    SHADOW = "SHADOW"
    LOAD_TEST = "LOAD_TEST"


class ClientType(str, Enum):
    UNKNOWN_REQUEST_CLIENT = "UNKNOWN_REQUEST_CLIENT"
    PLATFORM_SERVER = "PLATFORM_SERVER"
    PLATFORM_CLIENT = "PLATFORM_CLIENT"


class InsertionPageType(IntEnum):
    """Whether `full_insertion` is the complete list or a single page."""

    UNPAGED = 1  # Full list; the SDK takes the page
    PRE_PAGED = 2  # Already one page; invalid for delivery and shadow traffic


# =============================================================================
# Common
# =============================================================================


class UserInfo(WireModel):
    user_id: Optional[str] = None
    log_user_id: Optional[str] = None
    is_internal_user: Optional[bool] = None


class Timing(WireModel):
    client_log_timestamp: Optional[int] = None
    event_api_timestamp: Optional[int] = None


class Properties(WireModel):
    """Opaque payload attached to requests and insertions."""

    struct: Optional[Dict[str, Any]] = None
    struct_bytes: Optional[bytes] = None


class ClientInfo(WireModel):
    traffic_type: Optional[TrafficType] = None
    client_type: Optional[ClientType] = None


# =============================================================================
# Delivery
# =============================================================================


class Paging(WireModel):
    paging_id: Optional[str] = None
    size: Optional[int] = None
    cursor: Optional[str] = None
    offset: Optional[int] = None


class PagingInfo(WireModel):
    paging_id: Optional[str] = None
    cursor: Optional[str] = None


class Insertion(WireModel):
    """One content item as represented to the Delivery and Metrics services."""

    platform_id: Optional[int] = None
    user_info: Optional[UserInfo] = None
    timing: Optional[Timing] = None
    insertion_id: Optional[str] = Field(
        default=None,
        description="Assigned by the SDK, must be unset on input",
    )
    request_id: Optional[str] = Field(
        default=None,
        description="Back-reference to the Request, must be unset on input",
    )
    view_id: Optional[str] = None
    session_id: Optional[str] = None
    content_id: Optional[str] = Field(
        default=None,
        description="Stable external content identifier",
    )
    position: Optional[int] = Field(default=None, description="0-based rank")
    retrieval_rank: Optional[int] = None
    retrieval_score: Optional[float] = None
    properties: Optional[Properties] = None


class Request(WireModel):
    """One delivery or logging call."""

    platform_id: Optional[int] = None
    user_info: Optional[UserInfo] = None
    timing: Optional[Timing] = None
    client_info: Optional[ClientInfo] = None
    request_id: Optional[str] = Field(
        default=None,
        description="Assigned once by the SDK, must be unset on input",
    )
    view_id: Optional[str] = None
    session_id: Optional[str] = None
    client_request_id: Optional[str] = None
    use_case: Optional[str] = None
    search_query: Optional[str] = None
    insertion: Optional[List[Insertion]] = None
    paging: Optional[Paging] = None
    properties: Optional[Properties] = None


class Response(WireModel):
    insertion: Optional[List[Insertion]] = None
    paging_info: Optional[PagingInfo] = None


# =============================================================================
# Metrics
# =============================================================================


class CohortMembership(WireModel):
    """Request-scoped experiment assignment."""

    platform_id: Optional[int] = None
    user_info: Optional[UserInfo] = None
    timing: Optional[Timing] = None
    membership_id: Optional[str] = None
    cohort_id: Optional[str] = None
    arm: Optional[CohortArm] = None
    properties: Optional[Properties] = None


class LogRequest(WireModel):
    """Batched record sent to the Metrics service."""

    platform_id: Optional[int] = None
    user_info: Optional[UserInfo] = None
    timing: Optional[Timing] = None
    client_info: Optional[ClientInfo] = None
    cohort_membership: Optional[List[CohortMembership]] = None
    request: Optional[List[Request]] = None
    insertion: Optional[List[Insertion]] = None


class LogResponse(WireModel):
    pass


# =============================================================================
# SDK Envelopes
# =============================================================================

PropertiesMapFn = Callable[[Properties], Optional[Properties]]


class MetricsRequest(BaseModel):
    """A call that only logs Requests and Insertions."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: Request
    full_insertion: List[Insertion] = Field(
        default_factory=list,
        description="Insertions with all metadata",
    )
    insertion_page_type: InsertionPageType = InsertionPageType.UNPAGED
    insertion_start: int = Field(
        default=0,
        description="Global position of the first element of full_insertion",
    )
    to_compact_metrics_properties: Optional[PropertiesMapFn] = None


class DeliveryRequest(MetricsRequest):
    """A call for retrieving and ranking content."""

    only_log: Optional[bool] = None
    experiment: Optional[CohortMembership] = Field(
        default=None,
        description="Pre-computed membership; CONTROL only logs",
    )
    limit: Optional[int] = None
    to_compact_delivery_properties: Optional[PropertiesMapFn] = None


class ClientResponse(BaseModel):
    """
    Result of deliver or prepare_for_logging.

    Callers use `response_insertions`, send their own response, then invoke
    `log()` (or `schedule_log`) so remote logging stays off the response path.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    response_insertions: List[Insertion] = Field(default_factory=list)
    log: Callable[[], Awaitable[None]]
    log_request: Optional[LogRequest] = Field(
        default=None,
        description="The record log() sends; None means nothing to log",
    )
    execution_server: Optional[ExecutionServer] = None
    client_request_id: Optional[str] = None

    @property
    def called_remote(self) -> bool:
        """True when the insertions came from the Delivery service."""
        return self.execution_server == ExecutionServer.API


SdkRequest = Union[DeliveryRequest, MetricsRequest]
