"""
Label formatting for stamped episodes
"""


def pad_number(n: int, digits: int) -> str:
    """Left-pad n with zeros to at least `digits` characters, never truncating"""
    s = str(abs(int(n)))
    if digits <= len(s):
        return s
    return "0" * (digits - len(s)) + s


def sequence_number(start_number: int, position: int) -> int:
    return start_number + position


def format_label(prefix: str, start_number: int, position: int, digits: int) -> str:
    """
    Build the display label for a sequence position.

    >>> format_label("EP.", 1, 0, 2)
    'EP.01'
    >>> format_label("EP.", 1, 9, 1)
    'EP.10'
    """
    return f"{prefix}{pad_number(sequence_number(start_number, position), digits)}"
