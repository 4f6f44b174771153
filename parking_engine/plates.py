"""Нормализация, проверка и форматирование номеров и телефонов"""
import re

from parking_engine.config import CURRENCY_SYMBOL

# Стандартный формат (AAA-1234) и формат Mercosul (AAA1A23)
STANDARD_PLATE = re.compile(r"^[A-Z]{3}\d{4}$")
MERCOSUL_PLATE = re.compile(r"^[A-Z]{3}\d[A-Z]\d{2}$")


def normalize_plate(plate: str) -> str:
    """Форма для сравнения: верхний регистр, без разделителей"""
    return re.sub(r"[^A-Za-z0-9]", "", plate or "").upper()


def validate_plate(plate: str) -> bool:
    if not plate or len(plate.strip()) < 7:
        return False
    cleaned = plate.strip().upper()
    # Допускается только один дефис между буквами и цифрами
    if "-" in cleaned:
        if not re.match(r"^[A-Z]{3}-\d{4}$", cleaned):
            return False
        cleaned = cleaned.replace("-", "")
    return bool(STANDARD_PLATE.match(cleaned) or MERCOSUL_PLATE.match(cleaned))


def format_plate(plate: str) -> str:
    cleaned = normalize_plate(plate)
    if STANDARD_PLATE.match(cleaned):
        return f"{cleaned[:3]}-{cleaned[3:]}"
    return cleaned


def normalize_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def validate_phone(phone: str) -> bool:
    return 10 <= len(normalize_phone(phone)) <= 11


def format_phone(phone: str) -> str:
    cleaned = normalize_phone(phone)
    if len(cleaned) == 11:
        return f"({cleaned[:2]}) {cleaned[2:7]}-{cleaned[7:]}"
    if len(cleaned) == 10:
        return f"({cleaned[:2]}) {cleaned[2:6]}-{cleaned[6:]}"
    return cleaned


def format_currency(amount) -> str:
    return f"{CURRENCY_SYMBOL} {amount:.2f}"


def format_elapsed(minutes: int, seconds: int = 0) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}:{seconds:02d}"
