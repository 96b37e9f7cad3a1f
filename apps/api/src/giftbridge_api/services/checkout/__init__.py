"""Checkout payment services."""

from .orchestrator import PaymentConfirmation, PaymentConfirmationOrchestrator

__all__ = ["PaymentConfirmation", "PaymentConfirmationOrchestrator"]
