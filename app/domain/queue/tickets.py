"""Human-readable queue ticket numbers ("K001", "W014")"""

WALK_IN_PREFIX = "W"
DEFAULT_PREFIX = "D"


def ticket_prefix(doctor) -> str:
    """First letter of the doctor's English name, upper-cased"""
    name = (getattr(doctor, "name_en", None) or "").strip()
    return name[0].upper() if name else DEFAULT_PREFIX


def format_ticket(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence:03d}"
