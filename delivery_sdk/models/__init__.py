"""Models package - wire types, SDK requests and interfaces."""
from .interfaces import DeliveryOrchestrator, Sampler
from .schemas import (
    ClientInfo,
    ClientResponse,
    ClientType,
    CohortArm,
    CohortMembership,
    DeliveryRequest,
    ExecutionServer,
    Insertion,
    InsertionPageType,
    LogRequest,
    LogResponse,
    MetricsRequest,
    Paging,
    PagingInfo,
    Properties,
    Request,
    Response,
    Timing,
    TrafficType,
    UserInfo,
)

__all__ = [
    # Interfaces
    "DeliveryOrchestrator",
    "Sampler",
    # Wire types
    "ClientInfo",
    "ClientType",
    "CohortArm",
    "CohortMembership",
    "Insertion",
    "LogRequest",
    "LogResponse",
    "Paging",
    "PagingInfo",
    "Properties",
    "Request",
    "Response",
    "Timing",
    "TrafficType",
    "UserInfo",
    # SDK requests
    "ClientResponse",
    "DeliveryRequest",
    "ExecutionServer",
    "InsertionPageType",
    "MetricsRequest",
]
