"""
Delivery SDK.

Calls a remote Delivery service to rank content, falls back to the
caller's ordering on any failure, and logs what was served to a remote
Metrics service.
"""
from .config.client import ClientArguments, ClientConfig
from .core.error_handlers import log_on_error, throw_on_error
from .core.exceptions import (
    CallTimeoutError,
    ConfigError,
    RemoteCallError,
    SdkException,
    ValidationError,
)
from .models import (
    ClientResponse,
    CohortArm,
    CohortMembership,
    DeliveryOrchestrator,
    DeliveryRequest,
    ExecutionServer,
    Insertion,
    InsertionPageType,
    LogRequest,
    LogResponse,
    MetricsRequest,
    Paging,
    Properties,
    Request,
    Response,
)
from .services import (
    TwoArmExperimentConfig,
    to_contents,
    to_contents_without_insertion_id,
    two_arm_experiment_config_5050,
)
from .services.delivery import new_delivery_client, schedule_log

__version__ = "1.0.0"

__all__ = [
    "CallTimeoutError",
    "ClientArguments",
    "ClientConfig",
    "ClientResponse",
    "CohortArm",
    "CohortMembership",
    "ConfigError",
    "DeliveryOrchestrator",
    "DeliveryRequest",
    "ExecutionServer",
    "Insertion",
    "InsertionPageType",
    "LogRequest",
    "LogResponse",
    "MetricsRequest",
    "Paging",
    "Properties",
    "RemoteCallError",
    "Request",
    "Response",
    "SdkException",
    "TwoArmExperimentConfig",
    "ValidationError",
    "log_on_error",
    "new_delivery_client",
    "schedule_log",
    "throw_on_error",
    "to_contents",
    "to_contents_without_insertion_id",
    "two_arm_experiment_config_5050",
]
