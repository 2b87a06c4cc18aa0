"""Random sampling for shadow traffic."""
import random

from delivery_sdk.models.interfaces import Sampler


class RandomSampler(Sampler):
    """Simple random sampling that selects below the threshold."""

    def sample_random(self, threshold: float) -> bool:
        if threshold >= 1:
            return True
        if threshold <= 0:
            return False
        return random.random() < threshold
