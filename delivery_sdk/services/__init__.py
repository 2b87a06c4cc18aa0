"""Services package - experiment assignment, paging and validation."""
from .experiment import (
    ProcessedTwoArmExperimentConfig,
    TwoArmExperimentAssigner,
    TwoArmExperimentConfig,
    two_arm_experiment_config_5050,
)
from .map_response import to_contents, to_contents_without_insertion_id
from .pager import Pager
from .sampler import RandomSampler
from .validator import Validator

__all__ = [
    "Pager",
    "ProcessedTwoArmExperimentConfig",
    "RandomSampler",
    "TwoArmExperimentAssigner",
    "TwoArmExperimentConfig",
    "Validator",
    "to_contents",
    "to_contents_without_insertion_id",
    "two_arm_experiment_config_5050",
]
