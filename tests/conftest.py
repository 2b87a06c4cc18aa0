"""
Pytest configuration and fixtures.
"""
from typing import List
from unittest.mock import AsyncMock

import pytest

from delivery_sdk.config.client import ClientArguments
from delivery_sdk.config.settings import Settings
from delivery_sdk.core.error_handlers import throw_on_error
from delivery_sdk.models.schemas import (
    Insertion,
    LogResponse,
    Properties,
    Request,
    Response,
    UserInfo,
)
from delivery_sdk.services.delivery import new_delivery_client

FIXED_TIME_MILLIS = 12345678


class FakeUuid:
    """Deterministic id generator: uuid0, uuid1, ..."""

    def __init__(self) -> None:
        self.count = 0

    def __call__(self) -> str:
        value = f"uuid{self.count}"
        self.count += 1
        return value


def new_insertion(content_id: str, **kwargs) -> Insertion:
    return Insertion(
        content_id=content_id,
        properties=Properties(struct={"product": {"id": content_id, "title": f"Title {content_id}"}}),
        **kwargs,
    )


@pytest.fixture
def fixed_time_millis():
    return FIXED_TIME_MILLIS


@pytest.fixture
def make_insertion():
    """Factory fixture for an insertion with product properties."""
    return new_insertion


@pytest.fixture
def settings():
    """Fixture for default settings, independent of the environment."""
    return Settings(_env_file=None)


@pytest.fixture
def uuid():
    return FakeUuid()


@pytest.fixture
def delivery_client():
    """Delivery callback that echoes nothing until configured."""
    return AsyncMock(return_value=Response(insertion=[]))


@pytest.fixture
def metrics_client():
    return AsyncMock(return_value=LogResponse())


@pytest.fixture
def full_insertion() -> List[Insertion]:
    """Fixture for three ranked insertions with properties."""
    return [new_insertion("1"), new_insertion("2"), new_insertion("3")]


@pytest.fixture
def request_model() -> Request:
    """Fixture for a minimal valid request."""
    return Request(user_info=UserInfo(log_user_id="logUserId1"))


@pytest.fixture
def make_client(settings, uuid, delivery_client, metrics_client):
    """
    Factory fixture for a live client.
    Defaults to throw_on_error so reported failures surface in tests.
    """

    def _make(**overrides):
        args = {
            "delivery_client": delivery_client,
            "metrics_client": metrics_client,
            "handle_error": throw_on_error,
            "uuid": uuid,
            "now_millis": lambda: FIXED_TIME_MILLIS,
        }
        args.update(overrides)
        return new_delivery_client(ClientArguments(**args), settings)

    return _make
