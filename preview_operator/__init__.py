"""Preview environment operator: TTL-bounded PR environments on Kubernetes."""

__version__ = "1.0.0"
