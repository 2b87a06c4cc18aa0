"""
Two-arm experiment assignment.

Buckets are laid out control first, then treatment:

    [0, num_control_buckets)                      control range
    [num_control_buckets, num_total_buckets)      treatment range

Only the first `num_active_*` buckets of each range are assigned. The rest
is ramp headroom: raising `num_active_control_buckets` or
`num_active_treatment_buckets` never moves an already-assigned user.

WARNING: do not change `num_control_buckets` or `num_treatment_buckets`
after traffic has been served. That reshuffles every assignment.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict

from delivery_sdk.core.exceptions import ConfigError
from delivery_sdk.core.hashing import combine_hash, hash_code, mod
from delivery_sdk.models.schemas import CohortArm, CohortMembership


class TwoArmExperimentConfig(BaseModel):
    """Immutable description of a two-arm split."""

    model_config = ConfigDict(frozen=True)

    cohort_id: str
    num_control_buckets: int
    num_active_control_buckets: int
    num_treatment_buckets: int
    num_active_treatment_buckets: int


class ProcessedTwoArmExperimentConfig(TwoArmExperimentConfig):
    """A validated config with cached derived values."""

    cohort_id_hash: int
    num_total_buckets: int


class TwoArmExperimentAssigner:
    """
    Deterministic hash-based membership for two-arm experiments.
    Same (identity, config) always yields the same arm.
    """

    def prepare(self, config: TwoArmExperimentConfig) -> ProcessedTwoArmExperimentConfig:
        """
        Validate `config` and cache its hash and bucket total.

        Raises:
            ConfigError: Naming the first violated field
        """
        if not config.cohort_id:
            raise ConfigError("cohort_id", "cohort_id needs to be a non-empty string")
        if config.num_active_control_buckets < 0:
            raise ConfigError(
                "num_active_control_buckets",
                "num_active_control_buckets needs to be non-negative",
            )
        if config.num_active_treatment_buckets < 0:
            raise ConfigError(
                "num_active_treatment_buckets",
                "num_active_treatment_buckets needs to be non-negative",
            )
        if config.num_active_control_buckets > config.num_control_buckets:
            raise ConfigError(
                "num_active_control_buckets",
                "num_active_control_buckets needs to be <= num_control_buckets",
            )
        if config.num_active_treatment_buckets > config.num_treatment_buckets:
            raise ConfigError(
                "num_active_treatment_buckets",
                "num_active_treatment_buckets needs to be <= num_treatment_buckets",
            )
        num_total_buckets = config.num_control_buckets + config.num_treatment_buckets
        if num_total_buckets <= 0:
            raise ConfigError(
                "num_control_buckets",
                "num_control_buckets + num_treatment_buckets needs to be positive",
            )

        return ProcessedTwoArmExperimentConfig(
            **config.model_dump(),
            cohort_id_hash=hash_code(config.cohort_id),
            num_total_buckets=num_total_buckets,
        )

    def membership(
        self,
        identity: str,
        config: ProcessedTwoArmExperimentConfig,
    ) -> Optional[CohortMembership]:
        """
        Returns the CohortMembership for `identity`, or None when the
        identity lands in an inactive bucket.
        """
        bucket = mod(
            combine_hash(hash_code(identity), config.cohort_id_hash),
            config.num_total_buckets,
        )
        if bucket < config.num_active_control_buckets:
            return CohortMembership(cohort_id=config.cohort_id, arm=CohortArm.CONTROL)

        start = config.num_control_buckets
        if start <= bucket < start + config.num_active_treatment_buckets:
            return CohortMembership(cohort_id=config.cohort_id, arm=CohortArm.TREATMENT)

        return None


def two_arm_experiment_config_5050(
    cohort_id: str,
    control_percent: float,
    treatment_percent: float,
    num_buckets: int = 1000,
) -> ProcessedTwoArmExperimentConfig:
    """
    Build an even split over `num_buckets` buckets.

    Args:
        cohort_id: Name of the experiment
        control_percent: Percent of all users activated into CONTROL, in [0, 50]
        treatment_percent: Percent of all users activated into TREATMENT, in [0, 50]
        num_buckets: Total bucket count (split in half)

    Partial buckets round down.
    """
    half = num_buckets // 2
    config = TwoArmExperimentConfig(
        cohort_id=cohort_id,
        num_control_buckets=half,
        num_active_control_buckets=int(control_percent * num_buckets / 100),
        num_treatment_buckets=half,
        num_active_treatment_buckets=int(treatment_percent * num_buckets / 100),
    )
    return TwoArmExperimentAssigner().prepare(config)
