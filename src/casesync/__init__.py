"""casesync: keep a local cache in step with a case-management service and
reconcile processor payments into it."""

__version__ = "0.1.0"
