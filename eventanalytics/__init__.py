"""EventAnalytics - aggregation, anomaly detection, retention and privacy engine."""

__version__ = "0.1.0"
