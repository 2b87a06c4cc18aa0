"""
Pre-flight validation of delivery and metrics requests.
Only runs when the client's perform_checks is on.
"""
from typing import List, Optional

from delivery_sdk.core.exceptions import ValidationError
from delivery_sdk.models.schemas import (
    DeliveryRequest,
    InsertionPageType,
    SdkRequest,
)


class Validator:
    """
    Structural checks run before any remote call.

    The identity checks are fail-fast: at most one of them is reported per
    pass, the first violation in order. The paging and page-type checks are
    independent and appended after it, so `validate` returns between zero
    and three errors.
    """

    def __init__(self, only_log: bool = False, shadow_traffic_enabled: bool = False) -> None:
        """
        Args:
            only_log: The request will not call the Delivery service
            shadow_traffic_enabled: Logging traffic may be forwarded as shadow traffic
        """
        self._only_log = only_log
        self._shadow_traffic_enabled = shadow_traffic_enabled

    def validate(self, sdk_request: SdkRequest) -> List[ValidationError]:
        errors: List[ValidationError] = []

        error = self._validate_ids(sdk_request)
        if error is not None:
            errors.append(error)

        error = self._validate_paging(sdk_request)
        if error is not None:
            errors.append(error)

        if sdk_request.insertion_page_type == InsertionPageType.PRE_PAGED:
            if not self._only_log:
                errors.append(ValidationError(
                    "Delivery expects unpaged insertions",
                    field="insertion_page_type",
                ))
            elif self._shadow_traffic_enabled:
                errors.append(ValidationError(
                    "Insertions must be unpaged when shadow traffic is on",
                    field="insertion_page_type",
                ))

        return errors

    @staticmethod
    def _validate_ids(sdk_request: SdkRequest) -> Optional[ValidationError]:
        request = sdk_request.request
        if request.request_id:
            return ValidationError(
                "Request.requestId should not be set",
                field="Request.requestId",
            )
        if request.insertion:
            return ValidationError(
                "Do not set Request.insertion. Set full_insertion.",
                field="Request.insertion",
            )

        for insertion in sdk_request.full_insertion:
            if insertion.request_id:
                return ValidationError(
                    "Insertion.requestId should not be set",
                    field="Insertion.requestId",
                )
            if insertion.insertion_id:
                return ValidationError(
                    "Insertion.insertionId should not be set",
                    field="Insertion.insertionId",
                )
            if not insertion.content_id:
                return ValidationError(
                    "Insertion.contentId should be set",
                    field="Insertion.contentId",
                )

        experiment = (
            sdk_request.experiment if isinstance(sdk_request, DeliveryRequest) else None
        )
        if experiment is not None:
            # Inherited from the Request.
            if experiment.platform_id:
                return ValidationError(
                    "Experiment.platformId should not be set",
                    field="Experiment.platformId",
                )
            if experiment.user_info:
                return ValidationError(
                    "Experiment.userInfo should not be set",
                    field="Experiment.userInfo",
                )
            if experiment.timing:
                return ValidationError(
                    "Experiment.timing should not be set",
                    field="Experiment.timing",
                )

        if request.user_info is None:
            return ValidationError(
                "Request.userInfo should be set",
                field="Request.userInfo",
            )
        if not request.user_info.log_user_id:
            return ValidationError(
                "Request.userInfo.logUserId should be set",
                field="Request.userInfo.logUserId",
            )
        return None

    @staticmethod
    def _validate_paging(sdk_request: SdkRequest) -> Optional[ValidationError]:
        paging = sdk_request.request.paging
        if paging is None:
            return None
        offset = paging.offset or 0
        if offset < sdk_request.insertion_start:
            return ValidationError(
                f"offset({offset}) should be >= insertion_start({sdk_request.insertion_start}). "
                "offset should be the global position.",
                field="Request.paging.offset",
            )
        return None
