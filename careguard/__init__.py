"""CareGuard escalation engine: patient alerts, tiered escalation and caregiver chains."""

__version__ = "1.0.0"
