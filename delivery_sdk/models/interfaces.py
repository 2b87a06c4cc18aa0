"""
Collaborator interfaces (abstractions).
ABCs for the SDK's swappable components.
"""
from abc import ABC, abstractmethod

from delivery_sdk.models.schemas import (
    ClientResponse,
    DeliveryRequest,
    MetricsRequest,
)


class Sampler(ABC):
    """Chooses a subset of SDK traffic to process, in a testable way."""

    @abstractmethod
    def sample_random(self, threshold: float) -> bool:
        """
        Args:
            threshold: Sampling rate in the range [0, 1]

        Returns:
            True if the call is sampled in
        """
        pass


class DeliveryOrchestrator(ABC):
    """
    Public capability set of the SDK client.
    Implemented by the live client and the disabled (no-op) client.
    """

    @abstractmethod
    async def deliver(self, delivery_request: DeliveryRequest) -> ClientResponse:
        """
        Rank `full_insertion` with the Delivery service, or fall back to the
        caller's ordering.

        Args:
            delivery_request: Request plus full insertions

        Returns:
            ClientResponse with insertions and a deferred log closure
        """
        pass

    @abstractmethod
    async def prepare_for_logging(self, metrics_request: MetricsRequest) -> ClientResponse:
        """
        Page the caller's already-ranked insertions and prepare the log record.

        Args:
            metrics_request: Request plus full insertions

        Returns:
            ClientResponse with insertions and a deferred log closure
        """
        pass

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Whether this client takes any remote action."""
        pass
