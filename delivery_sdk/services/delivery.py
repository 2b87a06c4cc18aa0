"""
Delivery orchestrator - main SDK decision core.
Decides per request whether to call the Delivery service or serve the
caller's own ordering, and builds the deferred log closure.
Implements graceful degradation to the local ordering on any failure.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from delivery_sdk.config.client import (
    ClientArguments,
    ClientConfig,
    resolve_client_config,
)
from delivery_sdk.config.settings import Settings
from delivery_sdk.core.exceptions import CallTimeoutError, RemoteCallError
from delivery_sdk.core.retry import retry
from delivery_sdk.core.telemetry import REMOTE_FAILURES, RESPONSES, tracer
from delivery_sdk.core.timeout import with_timeout
from delivery_sdk.models.interfaces import DeliveryOrchestrator
from delivery_sdk.models.schemas import (
    ClientInfo,
    ClientResponse,
    CohortMembership,
    DeliveryRequest,
    ExecutionServer,
    Insertion,
    InsertionPageType,
    LogRequest,
    MetricsRequest,
    Paging,
    PropertiesMapFn,
    Request,
    Response,
    SdkRequest,
    Timing,
    TrafficType,
)
from delivery_sdk.services.experiment import TwoArmExperimentAssigner
from delivery_sdk.services.pager import Pager
from delivery_sdk.services.validator import Validator

logger = logging.getLogger(__name__)

DELIVERY_SERVICE = "delivery"
METRICS_SERVICE = "metrics"


# =============================================================================
# Helpers
# =============================================================================


async def noop_log() -> None:
    """Log closure used when there is nothing to send."""
    return None


def _retrieve_outcome(task: "asyncio.Future") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Background SDK task failed: {error!r}")


def schedule_log(client_response: ClientResponse) -> "asyncio.Future":
    """
    Run `client_response.log()` in the background and ignore its outcome.
    Must be called from a running event loop.
    """
    task = asyncio.ensure_future(client_response.log())
    task.add_done_callback(_retrieve_outcome)
    return task


def compact_insertion(insertion: Insertion, compact_fn: PropertiesMapFn) -> Insertion:
    """Apply a properties compaction function, copying only on change."""
    properties = insertion.properties
    if properties is None:
        return insertion
    new_properties = compact_fn(properties)
    if new_properties is properties:
        return insertion
    return insertion.model_copy(update={"properties": new_properties})


def fill_in_details(
    response_insertions: List[Insertion],
    full_insertion: List[Insertion],
) -> List[Insertion]:
    """
    Re-attach properties from the matching full insertion (by content_id).
    Response insertions without a match are passed through.
    """
    by_content_id = {
        insertion.content_id: insertion
        for insertion in full_insertion
        if insertion.content_id is not None
    }

    filled = []
    for response_insertion in response_insertions:
        full = by_content_id.get(response_insertion.content_id)
        if full is None:
            filled.append(response_insertion.model_copy())
        else:
            filled.append(response_insertion.model_copy(update={"properties": full.properties}))
    return filled


def new_delivery_client(
    args: ClientArguments,
    settings: Optional[Settings] = None,
) -> DeliveryOrchestrator:
    """
    Create the SDK client.

    Returns the live client, or the no-op client when `enabled` is False.

    Raises:
        ConfigError: If the arguments resolve to an invalid configuration
    """
    config = resolve_client_config(args, settings)
    if config.enabled:
        return LiveDeliveryOrchestrator(config)
    logger.info("Delivery SDK disabled, using no-op client")
    return NoopDeliveryOrchestrator(uuid=config.uuid)


# =============================================================================
# No-op client
# =============================================================================


class NoopDeliveryOrchestrator(DeliveryOrchestrator):
    """
    Used when callers disable all functionality.
    Pages the caller's insertions locally and never logs.
    """

    def __init__(self, uuid: Optional[Callable[[], str]] = None) -> None:
        self._pager = Pager()
        self._uuid = uuid

    @property
    def enabled(self) -> bool:
        return False

    async def deliver(self, delivery_request: DeliveryRequest) -> ClientResponse:
        return self._page_locally(delivery_request)

    async def prepare_for_logging(self, metrics_request: MetricsRequest) -> ClientResponse:
        return self._page_locally(metrics_request)

    def _page_locally(self, sdk_request: SdkRequest) -> ClientResponse:
        request = sdk_request.request
        response_insertions = self._pager.apply_paging(
            sdk_request.full_insertion,
            sdk_request.insertion_page_type,
            request.paging,
            sdk_request.insertion_start,
        )
        if self._uuid is not None:
            for insertion in response_insertions:
                insertion.insertion_id = self._uuid()

        return ClientResponse(
            response_insertions=response_insertions,
            log=noop_log,
            execution_server=ExecutionServer.SDK,
            client_request_id=request.client_request_id,
        )


# =============================================================================
# Live client
# =============================================================================


class LiveDeliveryOrchestrator(DeliveryOrchestrator):
    """
    SDK client that calls the Delivery and Metrics services.

    Responsibilities:
    - Validate requests and report problems through the error handler
    - Assign experiment membership
    - Call the Delivery service within its time budget
    - Fall back to the caller's ordering on any failure
    - Assemble the deferred log record
    """

    def __init__(self, config: ClientConfig) -> None:
        """
        Args:
            config: Resolved client configuration
        """
        self._config = config
        self._pager = Pager()
        self._assigner = TwoArmExperimentAssigner()
        # Strong references to fire-and-forget shadow calls.
        self._background_tasks: Set["asyncio.Future"] = set()

    @property
    def enabled(self) -> bool:
        return True

    @property
    def config(self) -> ClientConfig:
        return self._config

    async def deliver(self, delivery_request: DeliveryRequest) -> ClientResponse:
        """
        Rank content with the Delivery service when the request is eligible.

        The request's insertions are treated as unpaged. Failures are
        reported through the error handler and answered with the local
        ordering; this method only raises if the handler does.
        """
        config = self._config
        only_log = (
            delivery_request.only_log
            if delivery_request.only_log is not None
            else config.only_log
        )
        if config.perform_checks:
            self._report(Validator(only_log=only_log).validate(delivery_request))

        request = self._fill_in_fields(delivery_request.request)
        paging = self._effective_paging(request, delivery_request.limit)
        log_context = {"client_request_id": request.client_request_id}

        with tracer.start_as_current_span("delivery_sdk.deliver") as span:
            cohort_membership: Optional[CohortMembership] = None
            response_insertions: Optional[List[Insertion]] = None

            if not only_log:
                try:
                    cohort_membership = self._cohort_membership(delivery_request, request)
                    if config.should_apply_treatment(cohort_membership):
                        response_insertions = await self._call_delivery(
                            delivery_request, request, paging
                        )
                except Exception as e:
                    logger.warning(
                        f"Delivery failed, falling back to local ordering: {e}",
                        extra=log_context,
                    )
                    config.handle_error(e)

            called_remote = response_insertions is not None
            request_to_log: Optional[Request] = None
            if not called_remote:
                # The Delivery service pages its own response. Here we page
                # the caller's insertions to the same window.
                request_to_log = request
                response_insertions = self._pager.apply_paging(
                    delivery_request.full_insertion,
                    InsertionPageType.UNPAGED,
                    paging,
                    delivery_request.insertion_start,
                )

            self._add_missing_ids(response_insertions, request_to_log)
            log_request = self._create_log_request(
                delivery_request,
                request,
                response_insertions,
                request_to_log,
                cohort_membership,
            )

            execution_server = ExecutionServer.API if called_remote else ExecutionServer.SDK
            span.set_attribute("delivery_sdk.execution_server", execution_server.value)
            if cohort_membership is not None and cohort_membership.arm is not None:
                span.set_attribute("delivery_sdk.arm", cohort_membership.arm.value)

        RESPONSES.labels(operation="deliver", execution_server=execution_server.value).inc()
        logger.debug(
            f"Delivered {len(response_insertions)} insertions",
            extra={
                **log_context,
                "execution_server": execution_server.value,
                "cohort_id": cohort_membership.cohort_id if cohort_membership else None,
            },
        )

        return ClientResponse(
            response_insertions=response_insertions,
            log=self._create_log_fn(log_request, request.client_request_id),
            log_request=log_request,
            execution_server=execution_server,
            client_request_id=request.client_request_id,
        )

    async def prepare_for_logging(self, metrics_request: MetricsRequest) -> ClientResponse:
        """
        Same as `deliver` with the Delivery call skipped: for callers that
        rank content themselves and only want it logged. May forward the
        request as shadow traffic.
        """
        config = self._config
        shadow_enabled = config.shadow_traffic_delivery_rate > 0
        if config.perform_checks:
            validator = Validator(only_log=True, shadow_traffic_enabled=shadow_enabled)
            self._report(validator.validate(metrics_request))

        request = self._fill_in_fields(metrics_request.request)

        if shadow_enabled and config.sampler.sample_random(config.shadow_traffic_delivery_rate):
            await self._deliver_shadow_traffic(metrics_request, request)

        paging = self._effective_paging(request, None)
        response_insertions = self._pager.apply_paging(
            metrics_request.full_insertion,
            metrics_request.insertion_page_type,
            paging,
            metrics_request.insertion_start,
        )
        self._add_missing_ids(response_insertions, request)
        log_request = self._create_log_request(
            metrics_request, request, response_insertions, request
        )

        RESPONSES.labels(
            operation="prepare_for_logging",
            execution_server=ExecutionServer.SDK.value,
        ).inc()

        return ClientResponse(
            response_insertions=response_insertions,
            log=self._create_log_fn(log_request, request.client_request_id),
            log_request=log_request,
            execution_server=ExecutionServer.SDK,
            client_request_id=request.client_request_id,
        )

    # -------------------------------------------------------------------------
    # Remote calls
    # -------------------------------------------------------------------------

    async def _call_delivery(
        self,
        delivery_request: DeliveryRequest,
        request: Request,
        paging: Paging,
    ) -> List[Insertion]:
        """Call the Delivery service with compacted insertions."""
        compact_fn = (
            delivery_request.to_compact_delivery_properties
            or self._config.to_compact_delivery_properties
        )
        full_insertion = delivery_request.full_insertion[: self._config.max_request_insertions]
        single_request = request.model_copy(update={
            "insertion": [compact_insertion(ins, compact_fn) for ins in full_insertion],
            "paging": paging,
        })

        with tracer.start_as_current_span("delivery_sdk.delivery_call"):
            response = await self._call_remote(
                DELIVERY_SERVICE,
                self._config.delivery_client,
                single_request,
                self._config.delivery_timeout_millis,
            )

        if not isinstance(response, Response):
            response = Response.model_validate(response or {})
        return fill_in_details(response.insertion or [], delivery_request.full_insertion)

    async def _call_remote(
        self,
        service: str,
        call: Callable[[object], Awaitable[object]],
        payload: object,
        timeout_millis: int,
    ) -> object:
        """Invoke a remote callback within `timeout_millis`."""
        try:
            return await with_timeout(
                self._invoke(service, call, payload),
                timeout_millis,
                service=service,
            )
        except CallTimeoutError:
            REMOTE_FAILURES.labels(service=service, kind="timeout").inc()
            raise
        except RemoteCallError:
            REMOTE_FAILURES.labels(service=service, kind="error").inc()
            raise

    @staticmethod
    async def _invoke(
        service: str,
        call: Callable[[object], Awaitable[object]],
        payload: object,
    ) -> object:
        try:
            return await call(payload)
        except Exception as e:
            raise RemoteCallError(service, str(e) or type(e).__name__) from e

    async def _deliver_shadow_traffic(self, metrics_request: MetricsRequest, request: Request) -> None:
        """Forward a logging request to the Delivery service as SHADOW traffic."""
        client_info = (request.client_info or ClientInfo()).model_copy(
            update={"traffic_type": TrafficType.SHADOW}
        )
        shadow_request = request.model_copy(update={
            "insertion": list(metrics_request.full_insertion),
            "client_info": client_info,
        })

        if self._config.blocking_shadow_traffic:
            await self._send_shadow_traffic(shadow_request)
            return

        task = asyncio.ensure_future(self._send_shadow_traffic(shadow_request))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(_retrieve_outcome)

    async def _send_shadow_traffic(self, shadow_request: Request) -> None:
        try:
            await self._call_remote(
                DELIVERY_SERVICE,
                self._config.delivery_client,
                shadow_request,
                self._config.delivery_timeout_millis,
            )
        except Exception as e:
            logger.warning(
                f"Shadow traffic failed: {e}",
                extra={"client_request_id": shadow_request.client_request_id},
            )
            self._config.handle_error(e)

    # -------------------------------------------------------------------------
    # Request shaping
    # -------------------------------------------------------------------------

    def _report(self, errors: list) -> None:
        for error in errors:
            logger.warning(f"Invalid request: {error.message}")
            self._config.handle_error(error)

    def _fill_in_fields(self, request: Request) -> Request:
        """Copy the caller's request and fill in timing and client_request_id."""
        request = request.model_copy(deep=True)
        if request.timing is None:
            request.timing = Timing()
        if not request.timing.client_log_timestamp:
            request.timing.client_log_timestamp = self._config.now_millis()
        if not request.client_request_id:
            request.client_request_id = self._config.uuid()
        return request

    def _effective_paging(self, request: Request, limit: Optional[int]) -> Paging:
        """Paging with a positive size: paging.size, else limit, else default_limit."""
        paging = request.paging
        if paging is not None and paging.size is not None and paging.size > 0:
            return paging
        size = limit if limit is not None and limit > 0 else self._config.default_limit
        if paging is None:
            return Paging(size=size)
        return paging.model_copy(update={"size": size})

    def _cohort_membership(
        self,
        delivery_request: DeliveryRequest,
        request: Request,
    ) -> Optional[CohortMembership]:
        """
        The inline experiment, or the configured experiment's assignment.
        Missing platform_id, user_info and timing are taken from the request.
        """
        membership = delivery_request.experiment
        experiment_config = self._config.experiment_config
        if membership is None and experiment_config is not None:
            identity = self._identity(request)
            if identity is None:
                return None
            membership = self._assigner.membership(identity, experiment_config)
        if membership is None:
            return None

        membership = membership.model_copy()
        if not membership.platform_id and request.platform_id:
            membership.platform_id = request.platform_id
        if not membership.user_info and request.user_info:
            membership.user_info = request.user_info
        if not membership.timing and request.timing:
            membership.timing = request.timing
        return membership

    @staticmethod
    def _identity(request: Request) -> Optional[str]:
        user_info = request.user_info
        if user_info is None:
            return None
        return user_info.log_user_id or user_info.user_id

    def _add_missing_ids(
        self,
        response_insertions: List[Insertion],
        request_to_log: Optional[Request],
    ) -> None:
        """Assign request_id (log path only) and insertion_id, each at most once."""
        if request_to_log is not None and not request_to_log.request_id:
            request_to_log.request_id = self._config.uuid()

        for insertion in response_insertions:
            if not insertion.insertion_id:
                insertion.insertion_id = self._config.uuid()
            if request_to_log is None:
                continue
            if request_to_log.session_id:
                insertion.session_id = request_to_log.session_id
            if request_to_log.view_id:
                insertion.view_id = request_to_log.view_id
            if request_to_log.request_id:
                insertion.request_id = request_to_log.request_id

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    def _create_log_request(
        self,
        sdk_request: SdkRequest,
        request: Request,
        response_insertions: List[Insertion],
        request_to_log: Optional[Request] = None,
        cohort_membership: Optional[CohortMembership] = None,
    ) -> Optional[LogRequest]:
        """
        Assemble the Metrics record.

        The request is only included when the Delivery service was not
        called, since that service logs the requests it serves.
        """
        if request_to_log is None and cohort_membership is None:
            return None

        log_request = LogRequest()
        if request_to_log is not None:
            compact_fn = (
                sdk_request.to_compact_metrics_properties
                or self._config.to_compact_metrics_properties
            )
            # user_info is carried on the LogRequest itself.
            log_request.request = [
                request_to_log.model_copy(update={"insertion": None, "user_info": None})
            ]
            log_request.insertion = [
                compact_insertion(insertion, compact_fn)
                for insertion in fill_in_details(response_insertions, sdk_request.full_insertion)
            ]
        if cohort_membership is not None:
            log_request.cohort_membership = [cohort_membership]

        if request.platform_id:
            log_request.platform_id = request.platform_id
        if request.user_info:
            log_request.user_info = request.user_info
        if request.timing:
            log_request.timing = request.timing
        if request.client_info:
            log_request.client_info = request.client_info
        return log_request

    def _create_log_fn(
        self,
        log_request: Optional[LogRequest],
        client_request_id: Optional[str],
    ) -> Callable[[], Awaitable[None]]:
        """Creates the closure callers invoke after sending their response."""
        if log_request is None:
            return noop_log

        config = self._config

        async def log() -> None:
            with tracer.start_as_current_span("delivery_sdk.log"):
                try:
                    await retry(
                        config.metrics_retry_attempts,
                        lambda: self._call_remote(
                            METRICS_SERVICE,
                            config.metrics_client,
                            log_request,
                            config.metrics_timeout_millis,
                        ),
                    )
                except Exception as e:
                    logger.warning(
                        f"Metrics logging failed: {e}",
                        extra={"client_request_id": client_request_id},
                    )
                    config.handle_error(e)

        return log
