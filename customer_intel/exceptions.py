"""
Exceptions
==========

Error taxonomy shared by the feature, scoring and analytics layers.
"""

from typing import Iterable, Optional


class CustomerIntelError(Exception):
    """Base class for all errors raised by the package."""


class ReferentialIntegrityError(CustomerIntelError):
    """A record references a customer, order or product that does not exist."""

    def __init__(self, entity: str, ids: Iterable, reference: str = "customer"):
        self.entity = entity
        self.ids = sorted(ids)
        self.reference = reference
        preview = ", ".join(str(i) for i in self.ids[:10])
        more = f" (+{len(self.ids) - 10} more)" if len(self.ids) > 10 else ""
        super().__init__(
            f"{len(self.ids)} {entity} row(s) reference a missing {reference}: {preview}{more}"
        )


class CustomerNotFoundError(CustomerIntelError, LookupError):
    """No feature snapshot or prediction exists for the customer."""

    def __init__(self, customer_id):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class ModelNotTrainedError(CustomerIntelError):
    """Prediction was requested from a classifier that has not been trained."""


class TrainingError(CustomerIntelError):
    """The classifier could not be trained on the given snapshot."""


class StaleSnapshotError(CustomerIntelError):
    """Feature rows or predictions belong to a different feature generation."""

    def __init__(
        self,
        feature_generation: Optional[int],
        prediction_generations: Iterable[int],
        feature_row_generations: Optional[Iterable[int]] = None
    ):
        self.feature_generation = feature_generation
        self.prediction_generations = sorted(set(prediction_generations))
        self.feature_row_generations = sorted(set(feature_row_generations or []))
        super().__init__(
            f"Feature rows from generation(s) {self.feature_row_generations} and predictions "
            f"from feature generation(s) {self.prediction_generations} do not match "
            f"published feature generation {feature_generation}"
        )


class InvalidParameterError(CustomerIntelError, ValueError):
    """An analytics query was called with a malformed parameter."""

    def __init__(self, name: str, value, reason: str):
        self.name = name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {name}={value!r}: {reason}")


class PipelineStageError(CustomerIntelError):
    """A batch stage failed; carries the stage name and the offending entity."""

    def __init__(self, stage: str, cause: Exception, entity: Optional[str] = None):
        self.stage = stage
        self.entity = entity
        self.cause = cause
        where = f" [{entity}]" if entity else ""
        super().__init__(f"Stage '{stage}'{where} failed: {cause}")
