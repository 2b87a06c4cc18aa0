"""
End-to-end tests for deliver: remote ranking, experiment gating,
fallback and deferred logging.
"""
import asyncio
from unittest.mock import MagicMock

import pytest
from prometheus_client import REGISTRY

from delivery_sdk.core.exceptions import (
    CallTimeoutError,
    RemoteCallError,
    ValidationError,
)
from delivery_sdk.models.schemas import (
    CohortArm,
    CohortMembership,
    DeliveryRequest,
    ExecutionServer,
    Insertion,
    LogResponse,
    Paging,
    Request,
    Response,
    Timing,
    UserInfo,
)
from delivery_sdk.services.delivery import schedule_log
from delivery_sdk.services.experiment import TwoArmExperimentAssigner, TwoArmExperimentConfig


def remote_failures(kind: str) -> float:
    value = REGISTRY.get_sample_value(
        "delivery_sdk_remote_failures_total",
        {"service": "delivery", "kind": kind},
    )
    return value or 0.0


def fallback_insertions(request_id: str, first_uuid: int, content_ids):
    return [
        Insertion(
            content_id=content_id,
            position=position,
            insertion_id=f"uuid{first_uuid + position}",
            request_id=request_id,
        )
        for position, content_id in enumerate(content_ids)
    ]


class TestRemoteDelivery:
    @pytest.mark.asyncio
    async def test_reconstitutes_properties(self, make_client, delivery_client, metrics_client,
                                            request_model, full_insertion):
        delivery_client.return_value = Response(insertion=[
            Insertion(content_id="3", insertion_id="remote1", position=0),
            Insertion(content_id="1", insertion_id="remote2", position=1),
        ])
        client = make_client()

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert response.execution_server == ExecutionServer.API
        assert response.called_remote is True
        assert [i.content_id for i in response.response_insertions] == ["3", "1"]
        assert [i.insertion_id for i in response.response_insertions] == ["remote1", "remote2"]
        assert response.response_insertions[0].properties == full_insertion[2].properties
        assert response.response_insertions[1].properties == full_insertion[0].properties

        # The Delivery service logs what it serves.
        assert response.log_request is None
        await response.log()
        metrics_client.assert_not_called()

    @pytest.mark.asyncio
    async def test_delivery_request_shape(self, make_client, delivery_client, request_model,
                                          full_insertion, fixed_time_millis):
        client = make_client()

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        delivery_client.assert_awaited_once()
        sent = delivery_client.call_args[0][0]
        assert isinstance(sent, Request)
        assert sent.request_id is None
        assert sent.client_request_id == "uuid0"
        assert sent.timing == Timing(client_log_timestamp=fixed_time_millis)
        assert sent.paging == Paging(size=10)
        assert sent.insertion == full_insertion
        assert response.client_request_id == "uuid0"

    @pytest.mark.asyncio
    async def test_missing_insertion_ids_are_assigned(self, make_client, delivery_client,
                                                      request_model, full_insertion):
        delivery_client.return_value = Response(insertion=[
            Insertion(content_id="2"),
            Insertion(content_id="1", insertion_id="remote1"),
        ])
        client = make_client()

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert [i.insertion_id for i in response.response_insertions] == ["uuid1", "remote1"]

    @pytest.mark.asyncio
    async def test_accepts_wire_dict_response(self, make_client, delivery_client, request_model,
                                              full_insertion):
        delivery_client.return_value = {"insertion": [{"contentId": "2", "insertionId": "remote1"}]}
        client = make_client()

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert response.response_insertions[0].content_id == "2"
        assert response.response_insertions[0].properties == full_insertion[1].properties

    @pytest.mark.asyncio
    async def test_unknown_content_is_passed_through(self, make_client, delivery_client,
                                                     request_model, full_insertion):
        delivery_client.return_value = Response(insertion=[
            Insertion(content_id="unknown", insertion_id="remote1"),
        ])
        client = make_client()

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert response.response_insertions == [
            Insertion(content_id="unknown", insertion_id="remote1")
        ]

    @pytest.mark.asyncio
    async def test_caller_request_is_not_mutated(self, make_client, request_model, full_insertion):
        client = make_client()

        await client.deliver(DeliveryRequest(request=request_model, full_insertion=full_insertion))

        assert request_model.client_request_id is None
        assert request_model.timing is None
        assert all(insertion.insertion_id is None for insertion in full_insertion)

    @pytest.mark.asyncio
    async def test_client_request_id_is_kept(self, make_client, delivery_client, full_insertion):
        client = make_client()
        request = Request(user_info=UserInfo(log_user_id="logUserId1"), client_request_id="mine")

        response = await client.deliver(
            DeliveryRequest(request=request, full_insertion=full_insertion)
        )

        assert response.client_request_id == "mine"
        assert delivery_client.call_args[0][0].client_request_id == "mine"


class TestCompaction:
    @pytest.mark.asyncio
    async def test_compacts_delivery_properties(self, make_client, delivery_client,
                                                request_model, full_insertion):
        delivery_client.return_value = Response(insertion=[Insertion(content_id="1")])
        client = make_client(to_compact_delivery_properties=lambda properties: None)

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        sent = delivery_client.call_args[0][0]
        assert all(insertion.properties is None for insertion in sent.insertion)
        # Properties are re-attached to what the caller gets back.
        assert response.response_insertions[0].properties == full_insertion[0].properties
        assert full_insertion[0].properties is not None

    @pytest.mark.asyncio
    async def test_request_level_compaction_wins(self, make_client, delivery_client,
                                                 request_model, full_insertion):
        client_fn = MagicMock(side_effect=lambda properties: properties)
        client = make_client(to_compact_delivery_properties=client_fn)

        await client.deliver(DeliveryRequest(
            request=request_model,
            full_insertion=full_insertion,
            to_compact_delivery_properties=lambda properties: None,
        ))

        client_fn.assert_not_called()
        sent = delivery_client.call_args[0][0]
        assert all(insertion.properties is None for insertion in sent.insertion)

    @pytest.mark.asyncio
    async def test_caps_request_insertions(self, make_client, delivery_client, request_model,
                                           full_insertion):
        client = make_client(max_request_insertions=2)

        await client.deliver(DeliveryRequest(request=request_model, full_insertion=full_insertion))

        sent = delivery_client.call_args[0][0]
        assert [insertion.content_id for insertion in sent.insertion] == ["1", "2"]


class TestExperiments:
    @pytest.mark.asyncio
    async def test_control_arm_logs_request(self, make_client, delivery_client, metrics_client,
                                            request_model, full_insertion, fixed_time_millis):
        client = make_client()

        response = await client.deliver(DeliveryRequest(
            request=request_model,
            full_insertion=full_insertion,
            experiment=CohortMembership(cohort_id="HOLD_OUT", arm=CohortArm.CONTROL),
        ))

        delivery_client.assert_not_called()
        assert response.execution_server == ExecutionServer.SDK
        assert response.response_insertions == fallback_insertions("uuid1", 2, ["1", "2", "3"])

        log_request = response.log_request
        timing = Timing(client_log_timestamp=fixed_time_millis)
        assert log_request.user_info == UserInfo(log_user_id="logUserId1")
        assert log_request.timing == timing
        assert log_request.cohort_membership == [
            CohortMembership(
                cohort_id="HOLD_OUT",
                arm=CohortArm.CONTROL,
                user_info=UserInfo(log_user_id="logUserId1"),
                timing=timing,
            )
        ]
        assert log_request.request == [
            Request(timing=timing, request_id="uuid1", client_request_id="uuid0")
        ]
        assert [i.insertion_id for i in log_request.insertion] == ["uuid2", "uuid3", "uuid4"]
        assert log_request.insertion[0].properties == full_insertion[0].properties

        await response.log()
        metrics_client.assert_awaited_once_with(log_request)

    @pytest.mark.asyncio
    async def test_treatment_arm_logs_membership_only(self, make_client, delivery_client,
                                                      metrics_client, request_model,
                                                      full_insertion):
        delivery_client.return_value = Response(insertion=[
            Insertion(content_id="1", insertion_id="remote1"),
        ])
        client = make_client()

        response = await client.deliver(DeliveryRequest(
            request=request_model,
            full_insertion=full_insertion,
            experiment=CohortMembership(cohort_id="HOLD_OUT", arm=CohortArm.TREATMENT),
        ))

        delivery_client.assert_awaited_once()
        assert response.execution_server == ExecutionServer.API
        assert response.log_request.request is None
        assert response.log_request.insertion is None
        assert response.log_request.cohort_membership[0].arm == CohortArm.TREATMENT

        await response.log()
        metrics_client.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_custom_treatment_predicate(self, make_client, delivery_client, request_model,
                                              full_insertion):
        client = make_client(should_apply_treatment=lambda membership: False)

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        delivery_client.assert_not_called()
        assert response.execution_server == ExecutionServer.SDK

    @pytest.mark.parametrize(
        "log_user_id,arm,calls_remote",
        [
            ("user1", CohortArm.TREATMENT, True),
            ("user2", CohortArm.CONTROL, False),
            ("user3", None, True),
        ],
    )
    @pytest.mark.asyncio
    async def test_configured_experiment(self, make_client, delivery_client, full_insertion,
                                         log_user_id, arm, calls_remote):
        experiment_config = TwoArmExperimentAssigner().prepare(TwoArmExperimentConfig(
            cohort_id="HOLD_OUT",
            num_control_buckets=50,
            num_active_control_buckets=25,
            num_treatment_buckets=50,
            num_active_treatment_buckets=50,
        ))
        client = make_client(experiment_config=experiment_config)

        response = await client.deliver(DeliveryRequest(
            request=Request(user_info=UserInfo(log_user_id=log_user_id)),
            full_insertion=full_insertion,
        ))

        assert delivery_client.called is calls_remote
        if arm is None:
            assert response.log_request is None
        else:
            assert response.log_request.cohort_membership[0].arm == arm


class TestFallback:
    @pytest.mark.asyncio
    async def test_delivery_error_falls_back(self, make_client, delivery_client, request_model,
                                             full_insertion):
        delivery_client.side_effect = RuntimeError("connection reset")
        handle_error = MagicMock()
        client = make_client(handle_error=handle_error)

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert response.execution_server == ExecutionServer.SDK
        assert response.response_insertions == fallback_insertions("uuid1", 2, ["1", "2", "3"])
        assert response.log_request.request[0].request_id == "uuid1"

        handle_error.assert_called_once()
        error = handle_error.call_args[0][0]
        assert isinstance(error, RemoteCallError)
        assert isinstance(error.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_delivery_timeout_falls_back(self, make_client, delivery_client, request_model,
                                               full_insertion):
        async def slow_delivery(request):
            await asyncio.sleep(1)
            return Response(insertion=[])

        delivery_client.side_effect = slow_delivery
        handle_error = MagicMock()
        client = make_client(handle_error=handle_error, delivery_timeout_millis=10)
        before = remote_failures("timeout")

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert response.execution_server == ExecutionServer.SDK
        assert [i.content_id for i in response.response_insertions] == ["1", "2", "3"]
        assert isinstance(handle_error.call_args[0][0], CallTimeoutError)
        assert remote_failures("timeout") == before + 1

    @pytest.mark.asyncio
    async def test_throwing_handler_propagates(self, make_client, delivery_client, request_model,
                                               full_insertion):
        delivery_client.side_effect = RuntimeError("boom")
        client = make_client()

        with pytest.raises(RemoteCallError):
            await client.deliver(
                DeliveryRequest(request=request_model, full_insertion=full_insertion)
            )

    @pytest.mark.asyncio
    async def test_only_log_skips_delivery(self, make_client, delivery_client, request_model,
                                           full_insertion):
        client = make_client()

        response = await client.deliver(DeliveryRequest(
            request=request_model,
            full_insertion=full_insertion,
            only_log=True,
        ))

        delivery_client.assert_not_called()
        assert response.execution_server == ExecutionServer.SDK
        assert response.log_request.request is not None

    @pytest.mark.asyncio
    async def test_client_only_log_can_be_overridden(self, make_client, delivery_client,
                                                     request_model, full_insertion):
        client = make_client(only_log=True)

        await client.deliver(DeliveryRequest(
            request=request_model,
            full_insertion=full_insertion,
            only_log=False,
        ))

        delivery_client.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_default_limit(self, make_client, request_model, make_insertion):
        client = make_client(only_log=True)
        full_insertion = [make_insertion(str(i)) for i in range(15)]

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert len(response.response_insertions) == 10

    @pytest.mark.asyncio
    async def test_request_limit(self, make_client, delivery_client, request_model,
                                 full_insertion):
        delivery_client.side_effect = RuntimeError("down")
        client = make_client(handle_error=MagicMock())

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion, limit=2)
        )

        assert delivery_client.call_args[0][0].paging == Paging(size=2)
        assert [i.content_id for i in response.response_insertions] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_paging_window(self, make_client, full_insertion):
        client = make_client(only_log=True)
        request = Request(
            user_info=UserInfo(log_user_id="logUserId1"),
            paging=Paging(offset=1, size=2),
            session_id="session1",
            view_id="view1",
        )

        response = await client.deliver(
            DeliveryRequest(request=request, full_insertion=full_insertion)
        )

        assert response.response_insertions == [
            Insertion(content_id="2", position=1, insertion_id="uuid2",
                      request_id="uuid1", session_id="session1", view_id="view1"),
            Insertion(content_id="3", position=2, insertion_id="uuid3",
                      request_id="uuid1", session_id="session1", view_id="view1"),
        ]


class TestValidation:
    @pytest.mark.asyncio
    async def test_request_id_set_raises(self, make_client, full_insertion):
        client = make_client()
        request = Request(user_info=UserInfo(log_user_id="logUserId1"), request_id="caller")

        with pytest.raises(ValidationError) as exc_info:
            await client.deliver(DeliveryRequest(request=request, full_insertion=full_insertion))

        assert exc_info.value.field == "Request.requestId"

    @pytest.mark.asyncio
    async def test_reported_errors_do_not_stop_delivery(self, make_client, delivery_client,
                                                        full_insertion):
        handle_error = MagicMock()
        client = make_client(handle_error=handle_error, only_log=True)
        request = Request(user_info=UserInfo(log_user_id="logUserId1"), request_id="caller")

        response = await client.deliver(
            DeliveryRequest(request=request, full_insertion=full_insertion)
        )

        assert isinstance(handle_error.call_args[0][0], ValidationError)
        assert response.log_request.request[0].request_id == "caller"
        assert len(response.response_insertions) == 3

    @pytest.mark.asyncio
    async def test_checks_can_be_disabled(self, make_client, full_insertion):
        client = make_client(perform_checks=False, only_log=True)

        response = await client.deliver(DeliveryRequest(
            request=Request(request_id="caller"),
            full_insertion=full_insertion,
        ))

        assert len(response.response_insertions) == 3


class TestLogging:
    @pytest.mark.asyncio
    async def test_metrics_timeout_goes_to_handler(self, make_client, metrics_client,
                                                   request_model, full_insertion):
        async def slow_metrics(log_request):
            await asyncio.sleep(1)
            return LogResponse()

        metrics_client.side_effect = slow_metrics
        handle_error = MagicMock()
        client = make_client(
            handle_error=handle_error,
            metrics_timeout_millis=10,
            only_log=True,
        )

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )
        await response.log()

        handle_error.assert_called_once()
        assert isinstance(handle_error.call_args[0][0], CallTimeoutError)

    @pytest.mark.asyncio
    async def test_metrics_retry(self, make_client, metrics_client, request_model,
                                 full_insertion):
        metrics_client.side_effect = [RuntimeError("flaky"), LogResponse()]
        handle_error = MagicMock()
        client = make_client(
            handle_error=handle_error,
            metrics_retry_attempts=2,
            only_log=True,
        )

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )
        await response.log()

        assert metrics_client.await_count == 2
        handle_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_metrics_compaction(self, make_client, metrics_client, request_model,
                                      full_insertion):
        client = make_client(only_log=True, to_compact_metrics_properties=lambda p: None)

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )

        assert all(i.properties is None for i in response.log_request.insertion)

    @pytest.mark.asyncio
    async def test_schedule_log(self, make_client, metrics_client, request_model,
                                full_insertion):
        client = make_client(only_log=True)

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )
        await schedule_log(response)

        metrics_client.assert_awaited_once_with(response.log_request)

    @pytest.mark.asyncio
    async def test_wire_shape(self, make_client, request_model, full_insertion):
        client = make_client(only_log=True)

        response = await client.deliver(
            DeliveryRequest(request=request_model, full_insertion=full_insertion)
        )
        wire = response.log_request.model_dump(by_alias=True, exclude_none=True)

        assert wire["userInfo"] == {"logUserId": "logUserId1"}
        assert wire["request"][0]["requestId"] == "uuid1"
        assert "userInfo" not in wire["request"][0]
        assert wire["insertion"][0]["insertionId"] == "uuid2"
