"""
Location and calendar context for a couple's week.

Both partners resolve the week boundary in the couple's city rather than
their device's zone, so they always land on the same cycle.
"""
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

CITY_DATA: Dict[str, Dict[str, str]] = {
    "London": {"timezone": "Europe/London", "country": "United Kingdom"},
    "Sydney": {"timezone": "Australia/Sydney", "country": "Australia"},
    "Melbourne": {"timezone": "Australia/Melbourne", "country": "Australia"},
    "New York": {"timezone": "America/New_York", "country": "United States"},
}

SOUTHERN_HEMISPHERE = {"Sydney", "Melbourne"}

SEASONAL_GUIDANCE = {
    "spring": "Outdoor activities emerging, mild weather, blooming nature",
    "summer": "Peak outdoor season, long daylight, beach/park activities",
    "autumn": "Cozy indoor-outdoor mix, changing foliage, harvest themes",
    "winter": "Indoor-focused with occasional outdoor adventures, warm experiences",
}

TIME_BANDS = ("morning", "afternoon", "evening")

# 1-hour slots a picker can narrow a band down to
HOUR_SLOTS: Dict[str, List[str]] = {
    "morning": ["8:00 AM", "9:00 AM", "10:00 AM", "11:00 AM"],
    "afternoon": ["12:00 PM", "1:00 PM", "2:00 PM", "3:00 PM", "4:00 PM"],
    "evening": ["5:00 PM", "6:00 PM", "7:00 PM", "8:00 PM", "9:00 PM"],
}

ALL_HOURS = [hour for band in TIME_BANDS for hour in HOUR_SLOTS[band]]

BAND_RANGES = {
    "morning": (time(8, 0), time(12, 0)),
    "afternoon": (time(12, 0), time(17, 0)),
    "evening": (time(17, 0), time(22, 0)),
}

DAYS_IN_WEEK = 7


def resolve_city(city: Optional[str], default: str = "New York") -> str:
    if city in CITY_DATA:
        return city
    return default if default in CITY_DATA else "New York"


def city_now(city: str, now: Optional[datetime] = None) -> datetime:
    """Current wall-clock time in ``city``. Naive ``now`` values are treated as UTC."""
    zone = ZoneInfo(CITY_DATA[city]["timezone"])
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    return now.astimezone(zone)


def week_start_date(city: str, now: Optional[datetime] = None) -> date:
    """Monday of the current week in the city's time zone"""
    local = city_now(city, now).date()
    return local - timedelta(days=local.weekday())


def time_of_day(city: str, now: Optional[datetime] = None) -> str:
    hour = city_now(city, now).hour
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "night"


def season(city: str, now: Optional[datetime] = None) -> str:
    month = city_now(city, now).month
    if city in SOUTHERN_HEMISPHERE:
        if month in (10, 11, 12):
            return "spring"
        if month in (1, 2, 3):
            return "summer"
        if month in (4, 5, 6):
            return "autumn"
        return "winter"

    if month in (4, 5, 6):
        return "spring"
    if month in (7, 8, 9):
        return "summer"
    if month in (10, 11, 12):
        return "autumn"
    return "winter"


def seasonal_guidance(season_name: str, city: str) -> str:
    guidance = SEASONAL_GUIDANCE[season_name]
    if city in SOUTHERN_HEMISPHERE:
        return guidance + " (Southern Hemisphere)"
    return guidance


def location_context(city: str, now: Optional[datetime] = None) -> Dict[str, str]:
    """Context block handed to the generation function"""
    local = city_now(city, now)
    season_name = season(city, now)
    return {
        "city": city,
        "country": CITY_DATA[city]["country"],
        "timezone": CITY_DATA[city]["timezone"],
        "season": season_name,
        "seasonal_guidance": seasonal_guidance(season_name, city),
        "time_of_day": time_of_day(city, now),
        "local_time": local.strftime("%H:%M %Z"),
    }


def day_offset_to_date(week_start: date, day_offset: int) -> date:
    return week_start + timedelta(days=day_offset)


def band_time_range(time_band: str):
    """(start, end) as "HH:MM" strings for a time band"""
    start, end = BAND_RANGES[time_band]
    return start.strftime("%H:%M"), end.strftime("%H:%M")


def is_valid_slot(day_offset: int, time_band: str) -> bool:
    return 0 <= day_offset < DAYS_IN_WEEK and time_band in TIME_BANDS
