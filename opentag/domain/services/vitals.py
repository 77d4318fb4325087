"""Derived vitals shown on a resolved medical card.

Pure functions; nothing here is stored or transported.
"""

from datetime import date
from typing import Optional

from opentag.domain.enums import BmiCategory

INCHES_PER_CM = 1 / 2.54
POUNDS_PER_KG = 2.20462


def calculate_age(date_of_birth: date, today: Optional[date] = None) -> int:
    """Age in completed years on ``today`` (defaults to the current date)."""
    today = today or date.today()
    had_birthday = (today.month, today.day) >= (date_of_birth.month, date_of_birth.day)
    return today.year - date_of_birth.year - (0 if had_birthday else 1)


def calculate_age_months(date_of_birth: date, today: Optional[date] = None) -> int:
    """Age in completed months on ``today``."""
    today = today or date.today()
    months = (today.year - date_of_birth.year) * 12 + today.month - date_of_birth.month
    if today.day < date_of_birth.day:
        months -= 1
    return months


def format_age(date_of_birth: date, today: Optional[date] = None) -> str:
    """Human-readable age: months below two years, years otherwise."""
    years = calculate_age(date_of_birth, today)
    if years < 2:
        return f"{calculate_age_months(date_of_birth, today)} months"
    return f"{years} years"


def calculate_bmi(height_cm: int, weight_kg: int) -> Optional[float]:
    """Body-mass index rounded to one decimal; None when height is zero."""
    if height_cm <= 0:
        return None
    height_m = height_cm / 100
    return round(weight_kg / (height_m * height_m), 1)


def classify_bmi(bmi: float) -> BmiCategory:
    if bmi < 18.5:
        return BmiCategory.UNDERWEIGHT
    if bmi < 25:
        return BmiCategory.NORMAL
    if bmi < 30:
        return BmiCategory.OVERWEIGHT
    return BmiCategory.OBESE


def cm_to_inches(height_cm: int) -> float:
    return round(height_cm * INCHES_PER_CM, 1)


def kg_to_pounds(weight_kg: int) -> float:
    return round(weight_kg * POUNDS_PER_KG, 1)
