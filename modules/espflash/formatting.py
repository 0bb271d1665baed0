"""Human readable sizes and addresses."""

_UNITS = ("Bytes", "KB", "MB")


def format_bytes(size: int) -> str:
    """Format a byte count: ``0 Bytes``, ``512 Bytes``, ``8.00 KB``, ``1.50 MB``."""
    if size < 1024:
        return f"{size} Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {_UNITS[unit]}"


def format_offset(offset: int) -> str:
    return f"0x{offset:x}"
