import time

BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
SLUG_LENGTH = 8

_MASK_31 = 0x7FFFFFFF


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def _time_based_slug() -> str:
    # A blank name has nothing to hash, fall back to the clock
    millis = int(time.time() * 1000)
    return _to_base36(millis)[-SLUG_LENGTH:].rjust(SLUG_LENGTH, "0")


def generate_slug(name: str) -> str:
    """
    Propose an 8-character base-36 slug for a query name.

    The same non-blank name always yields the same slug: the name is folded
    into a 31-bit polynomial rolling hash, which then seeds a linear
    congruential generator that emits one base-36 digit per round.

    The result is only a proposal. Uniqueness is enforced by the store,
    which rejects a duplicate slug with "A query with this slug already exists".

    Example:
        generate_slug("Daily Report")  # always the same 8 characters
    """
    if not name.strip():
        return _time_based_slug()

    seed = len(name) + 1000
    for char in name:
        seed = (seed * 31 + ord(char)) & _MASK_31

    digits = []
    rng = seed
    for _ in range(SLUG_LENGTH):
        rng = (rng * 1664525 + 1013904223) & _MASK_31
        digits.append(BASE36_DIGITS[rng % 36])

    return "".join(digits)
