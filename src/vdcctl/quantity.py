"""Resource quantity parsing and encoding.

Memory and storage sizes arrive as platform quantity strings ("4Gi", "512Mi",
"8GB", "1Ti") and are compared in binary GiB. CPU counts are encoded either as
whole cores ("8") or milli-cores ("1500m").

A bare number without a unit ("20") is read as GiB, which is how VDC quotas
and template flavors are written.
"""

import re

GIB = 1024**3

_QUANTITY_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$")

_UNIT_BYTES: dict[str, int] = {
    # Binary
    "ki": 1024,
    "kib": 1024,
    "mi": 1024**2,
    "mib": 1024**2,
    "gi": GIB,
    "gib": GIB,
    "ti": 1024**4,
    "tib": 1024**4,
    "pi": 1024**5,
    "pib": 1024**5,
    # Decimal
    "k": 1000,
    "kb": 1000,
    "m": 1000**2,
    "mb": 1000**2,
    "g": 1000**3,
    "gb": 1000**3,
    "t": 1000**4,
    "tb": 1000**4,
    "p": 1000**5,
    "pb": 1000**5,
    # Unitless
    "": GIB,
}


def parse_bytes(value: str | int | float) -> int:
    """Parse a memory/storage quantity into bytes.

    Args:
        value: Quantity string such as "4Gi", or a number of GiB

    Returns:
        Size in bytes

    Raises:
        ValueError: If the quantity cannot be parsed
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, (int, float)):
        return int(value * GIB)

    match = _QUANTITY_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid quantity: {value!r}")

    number, unit = match.groups()
    multiplier = _UNIT_BYTES.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"Unknown quantity unit '{unit}' in {value!r}")

    return int(float(number) * multiplier)


def to_gib(value: str | int | float) -> float:
    """Convert a quantity to binary GiB."""
    return parse_bytes(value) / GIB


def gib_quantity(gib: int) -> str:
    """Encode whole GiB as a platform quantity ("16Gi")."""
    return f"{gib}Gi"


def milli_cpu_quantity(cores: float) -> str:
    """Encode cores as milli-cores ("2000m")."""
    return f"{round(cores * 1000)}m"


def cpu_quantity(cores: float) -> str:
    """Encode cores as whole cores when integral, milli-cores otherwise."""
    if float(cores).is_integer():
        return str(int(cores))
    return milli_cpu_quantity(cores)


def parse_cpu(value: str | int | float) -> float:
    """Parse a CPU quantity ("2", "500m", 1.5) into cores.

    Raises:
        ValueError: If the quantity cannot be parsed
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid CPU quantity: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    try:
        if text.endswith("m"):
            return float(text[:-1]) / 1000
        return float(text)
    except ValueError as e:
        raise ValueError(f"Invalid CPU quantity: {value!r}") from e


__all__ = [
    "GIB",
    "cpu_quantity",
    "gib_quantity",
    "milli_cpu_quantity",
    "parse_bytes",
    "parse_cpu",
    "to_gib",
]
