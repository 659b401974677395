from datetime import date, timedelta
from typing import List, Tuple

# Estonian school holidays (koolivaheajad), inclusive ranges
ESTONIAN_HOLIDAYS: List[Tuple[date, date]] = [
    (date(2024, 10, 21), date(2024, 10, 27)),  # I vaheaeg
    (date(2024, 12, 23), date(2025, 1, 5)),    # II vaheaeg
    (date(2025, 2, 24), date(2025, 3, 2)),     # III vaheaeg
    (date(2025, 4, 14), date(2025, 4, 20)),    # IV vaheaeg
    (date(2025, 6, 10), date(2025, 8, 31)),    # V vaheaeg
    (date(2025, 10, 20), date(2025, 10, 26)),  # I vaheaeg 2025-2026
    (date(2025, 12, 22), date(2026, 1, 4)),    # II vaheaeg 2025-2026
    (date(2026, 2, 23), date(2026, 3, 1)),     # III vaheaeg 2025-2026
    (date(2026, 4, 6), date(2026, 4, 12)),     # IV vaheaeg 2025-2026
    (date(2026, 6, 9), date(2026, 8, 31)),     # V vaheaeg 2025-2026
]


def is_holiday(day: date) -> bool:
    return any(start <= day <= end for start, end in ESTONIAN_HOLIDAYS)


def js_weekday(day: date) -> int:
    """Weekday numbered 0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def weekly_training_dates(start: date, end: date, day_of_week: int) -> List[date]:
    """
    All dates between start and end (inclusive) falling on day_of_week
    (0 = Sunday), skipping school holidays.
    """
    if not 0 <= day_of_week <= 6:
        raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")

    current = start + timedelta(days=(day_of_week - js_weekday(start)) % 7)
    dates = []
    while current <= end:
        if not is_holiday(current):
            dates.append(current)
        current += timedelta(days=7)
    return dates
