"""Exception taxonomy for the analytics engine.

Insufficient samples and missing baselines are not errors: detectors return
empty results for them. Store failures raised by adapters propagate to the
job runner unchanged.
"""


class AnalyticsError(Exception):
    """Base exception for analytics engine errors"""
    pass


class PolicyNotFoundError(AnalyticsError):
    """Raised when no retention policy exists for a record type"""

    def __init__(self, record_type: str):
        self.record_type = record_type
        super().__init__(f"Policy not found for type: {record_type}")


class InvalidSubjectRequestError(AnalyticsError):
    """Raised for an unsupported data subject request type"""
    pass


class StoreError(AnalyticsError):
    """Raised by store adapters when a stored document cannot be decoded"""
    pass
