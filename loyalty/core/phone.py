import re

from loyalty.core.config import settings


def normalize_phone(phone: str, country_code: str = None) -> str:
    """Normalize a phone number to +<country><number>.

    Handles raw 10-digit numbers (8888888888), numbers carrying the
    country prefix without a plus (918888888888), already formatted
    numbers (+918888888888) and the local trunk prefix (08888888888).
    """
    if not phone:
        return phone

    country_code = country_code or settings.DEFAULT_PHONE_COUNTRY_CODE
    digits = re.sub(r"\D", "", phone)

    if digits.startswith("0"):
        digits = digits[1:]
    if len(digits) == 10:
        digits = country_code + digits

    return f"+{digits}"
