"""
Route-related enumerations.
"""

import enum


class VehicleType(str, enum.Enum):
    """Transit modes. WALKING is valid for a step but never listed on a route."""
    BUS = "bus"
    TAXI = "taxi"
    KEKE = "keke"
    OKADA = "okada"
    TRAIN = "train"
    WALKING = "walking"


class Difficulty(str, enum.Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class SuggestionStatus(str, enum.Enum):
    """
    Route suggestion lifecycle.

    PENDING_APPROVAL: Submitted, route stored inactive until reviewed
    APPROVED: Reviewer activated the route
    REJECTED: Reviewer declined, route stays inactive
    """
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
