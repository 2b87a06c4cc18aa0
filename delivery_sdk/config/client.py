"""
Client arguments and the resolved client configuration.

`ClientArguments` is what callers pass: required collaborators plus
optional overrides. `resolve_client_config` merges the overrides over the
environment settings once, so request handling only ever reads a fully
populated, frozen `ClientConfig`.
"""
import time
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from delivery_sdk.config.settings import Settings, get_settings
from delivery_sdk.core.error_handlers import ErrorHandler
from delivery_sdk.core.exceptions import ConfigError
from delivery_sdk.models.interfaces import Sampler
from delivery_sdk.models.schemas import (
    CohortArm,
    CohortMembership,
    LogRequest,
    LogResponse,
    Properties,
    PropertiesMapFn,
    Request,
    Response,
)
from delivery_sdk.services.experiment import ProcessedTwoArmExperimentConfig
from delivery_sdk.services.sampler import RandomSampler

DeliveryCallback = Callable[[Request], Awaitable[Response]]
MetricsCallback = Callable[[LogRequest], Awaitable[LogResponse]]
ShouldApplyTreatmentFn = Callable[[Optional[CohortMembership]], bool]


def identity_properties(properties: Properties) -> Optional[Properties]:
    """Default compaction: keep every property."""
    return properties


def default_should_apply_treatment(cohort_membership: Optional[CohortMembership]) -> bool:
    """Every arm except CONTROL calls the Delivery service."""
    if cohort_membership is None or cohort_membership.arm is None:
        return True
    return cohort_membership.arm != CohortArm.CONTROL


def wall_clock_millis() -> int:
    return int(time.time() * 1000)


class ClientArguments(BaseModel):
    """Arguments for building a client. Unset options fall back to Settings."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    delivery_client: DeliveryCallback = Field(..., description="Calls the Delivery service")
    metrics_client: MetricsCallback = Field(..., description="Calls the Metrics service")
    handle_error: ErrorHandler = Field(..., description="Receives every reported failure")
    uuid: Callable[[], str] = Field(..., description="Generates request and insertion ids")

    enabled: Optional[bool] = None
    perform_checks: Optional[bool] = None
    only_log: Optional[bool] = None
    delivery_timeout_millis: Optional[int] = None
    metrics_timeout_millis: Optional[int] = None
    default_limit: Optional[int] = None
    max_request_insertions: Optional[int] = None
    shadow_traffic_delivery_rate: Optional[float] = None
    blocking_shadow_traffic: Optional[bool] = None
    metrics_retry_attempts: Optional[int] = None

    now_millis: Optional[Callable[[], int]] = None
    sampler: Optional[Sampler] = None
    should_apply_treatment: Optional[ShouldApplyTreatmentFn] = None
    to_compact_delivery_properties: Optional[PropertiesMapFn] = None
    to_compact_metrics_properties: Optional[PropertiesMapFn] = None
    experiment_config: Optional[ProcessedTwoArmExperimentConfig] = Field(
        default=None,
        description="Assigns users to arms when a request has no inline experiment",
    )


class ClientConfig(BaseModel):
    """Fully populated client configuration, built once per client."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    delivery_client: DeliveryCallback
    metrics_client: MetricsCallback
    handle_error: ErrorHandler
    uuid: Callable[[], str]

    enabled: bool
    perform_checks: bool
    only_log: bool
    delivery_timeout_millis: int
    metrics_timeout_millis: int
    default_limit: int
    max_request_insertions: int
    shadow_traffic_delivery_rate: float
    blocking_shadow_traffic: bool
    metrics_retry_attempts: int

    now_millis: Callable[[], int]
    sampler: Sampler
    should_apply_treatment: ShouldApplyTreatmentFn
    to_compact_delivery_properties: PropertiesMapFn
    to_compact_metrics_properties: PropertiesMapFn
    experiment_config: Optional[ProcessedTwoArmExperimentConfig] = None


def _pick(value, default):
    return default if value is None else value


def resolve_client_config(
    args: ClientArguments,
    settings: Optional[Settings] = None,
) -> ClientConfig:
    """
    Merge `args` over `settings`.

    Raises:
        ConfigError: If a resolved value is out of range
    """
    settings = settings or get_settings()

    shadow_rate = _pick(args.shadow_traffic_delivery_rate, settings.SHADOW_TRAFFIC_DELIVERY_RATE)
    if shadow_rate < 0 or shadow_rate > 1:
        raise ConfigError(
            "shadow_traffic_delivery_rate",
            "shadow_traffic_delivery_rate must be between 0 and 1",
        )
    retry_attempts = _pick(args.metrics_retry_attempts, settings.METRICS_RETRY_ATTEMPTS)
    if retry_attempts < 1:
        raise ConfigError("metrics_retry_attempts", "metrics_retry_attempts must be >= 1")
    default_limit = _pick(args.default_limit, settings.DEFAULT_LIMIT)
    if default_limit < 1:
        raise ConfigError("default_limit", "default_limit must be >= 1")
    max_request_insertions = _pick(args.max_request_insertions, settings.MAX_REQUEST_INSERTIONS)
    if max_request_insertions < 1:
        raise ConfigError("max_request_insertions", "max_request_insertions must be >= 1")
    delivery_timeout_millis = _pick(args.delivery_timeout_millis, settings.DELIVERY_TIMEOUT_MILLIS)
    if delivery_timeout_millis <= 0:
        raise ConfigError("delivery_timeout_millis", "delivery_timeout_millis must be positive")
    metrics_timeout_millis = _pick(args.metrics_timeout_millis, settings.METRICS_TIMEOUT_MILLIS)
    if metrics_timeout_millis <= 0:
        raise ConfigError("metrics_timeout_millis", "metrics_timeout_millis must be positive")

    return ClientConfig(
        delivery_client=args.delivery_client,
        metrics_client=args.metrics_client,
        handle_error=args.handle_error,
        uuid=args.uuid,
        enabled=_pick(args.enabled, settings.ENABLED),
        perform_checks=_pick(args.perform_checks, settings.PERFORM_CHECKS),
        only_log=_pick(args.only_log, settings.ONLY_LOG),
        delivery_timeout_millis=delivery_timeout_millis,
        metrics_timeout_millis=metrics_timeout_millis,
        default_limit=default_limit,
        max_request_insertions=max_request_insertions,
        shadow_traffic_delivery_rate=shadow_rate,
        blocking_shadow_traffic=_pick(args.blocking_shadow_traffic, settings.BLOCKING_SHADOW_TRAFFIC),
        metrics_retry_attempts=retry_attempts,
        now_millis=args.now_millis or wall_clock_millis,
        sampler=args.sampler or RandomSampler(),
        should_apply_treatment=args.should_apply_treatment or default_should_apply_treatment,
        to_compact_delivery_properties=args.to_compact_delivery_properties or identity_properties,
        to_compact_metrics_properties=args.to_compact_metrics_properties or identity_properties,
        experiment_config=args.experiment_config,
    )
