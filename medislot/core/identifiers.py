import secrets

SLOT_PREFIX = 'SLO'
APPOINTMENT_PREFIX = 'APP'


def generate_custom_id(prefix: str) -> str:
    """Human-facing short id: prefix followed by six digits, e.g. APP482913."""
    return f'{prefix}{100000 + secrets.randbelow(900000)}'


def generate_slot_id() -> str:
    return generate_custom_id(SLOT_PREFIX)


def generate_appointment_id() -> str:
    return generate_custom_id(APPOINTMENT_PREFIX)
