"""
Activity tables owned by the travel product.

The gamification engine never writes here; it only counts rows.
"""

from .booking import Booking
from .city_checkin import CityCheckin
from .review import Review
from .trip import Trip

__all__ = ["Booking", "CityCheckin", "Review", "Trip"]
