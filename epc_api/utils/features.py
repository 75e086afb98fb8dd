"""
Certificate field domains and postcode normalization.
"""

from typing import Optional

ENERGY_RATINGS = ("A", "B", "C", "D", "E", "F", "G")

FUEL_TYPES = (
    "mains gas (not community)",
    "electricity",
    "oil",
    "LPG",
    "solid fuel",
)

FLOOR_AREA_RANGES = ("unknown", "1-55m²", "55-70m²", "70-85m²", "85-110m²", "110m+")


# =========================
# Postcode helpers
# =========================
def normalize_postcode(pc: Optional[str]) -> Optional[str]:
    """Strip and uppercase a postcode fragment. Blank input becomes None."""
    if pc is None:
        return None
    val = str(pc).strip().upper()
    return val or None
