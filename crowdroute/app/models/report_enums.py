"""
Fare report enumerations.
"""

import enum


class ReportSource(str, enum.Enum):
    """
    Submission path of a fare report; each path has its own cooldown.

    ROUTE_FEEDBACK: Feedback on a step while viewing a route (24h)
    FARE_REPORT: Lightweight standalone fare report (6h)
    """
    ROUTE_FEEDBACK = "route_feedback"
    FARE_REPORT = "fare_report"


class TimeOfDay(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class TrafficCondition(str, enum.Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


class WeatherCondition(str, enum.Enum):
    CLEAR = "clear"
    RAINY = "rainy"
    CLOUDY = "cloudy"
    STORMY = "stormy"


class RouteCondition(str, enum.Enum):
    """Reported state of the road/service along a route."""
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    BLOCKED = "blocked"
