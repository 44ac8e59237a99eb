"""
Marketplace module for Molted
Provides the FastAPI server and the job approval state machine
"""

from molted.marketplace.approval import (
    ApprovalError,
    ApprovalErrorKind,
    ApprovalStateMachine,
    PaymentRequiredError,
)

__all__ = ["ApprovalError", "ApprovalErrorKind", "ApprovalStateMachine", "PaymentRequiredError"]
