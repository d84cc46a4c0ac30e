"""guestsync: reconcile PMS guest records against the CRM."""

__version__ = "1.0.0"
