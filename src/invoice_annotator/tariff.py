"""HS tariff reference data and CDS override helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class TariffEntry:
    hs_code: str
    description: str
    suggested_overrides: Tuple[str, ...] = ()


# Keyed by HS code without separators.
TARIFF_DATA: Dict[str, TariffEntry] = {
    entry.hs_code: entry
    for entry in (
        TariffEntry(
            "85171200",
            "Telephones for cellular networks or for other wireless networks (Smartphones)",
            ("AI", "VATZ"),
        ),
        TariffEntry(
            "84713000",
            "Portable automatic data processing machines, weighing not more than 10 kg, consisting of "
            "at least a central processing unit, a keyboard and a display (Laptops)",
            ("AI", "VATZ", "CAP07"),
        ),
        TariffEntry("90211000", "Orthopaedic or fracture appliances", ("MD021", "VATZ")),
        TariffEntry(
            "61091000",
            "T-shirts, singlets and other vests, of cotton, knitted or crocheted",
            ("TX001",),
        ),
        TariffEntry(
            "62034200",
            "Men's or boys' trousers, bib and brace overalls, breeches and shorts, of cotton (denim)",
            ("TX001", "CAP12"),
        ),
        TariffEntry(
            "08051022",
            "Fresh sweet oranges (excluding Navel, Naveline, Navelate, Salustiana, etc.)",
            ("AG01", "PH01"),
        ),
    )
}


def normalize_hs_code(hs_code: Optional[str]) -> str:
    return "".join(ch for ch in str(hs_code or "") if ch not in ". ")


def lookup_tariff(hs_code: Optional[str]) -> Optional[TariffEntry]:
    return TARIFF_DATA.get(normalize_hs_code(hs_code))


def toggle_override(overrides: Sequence[str], code: str) -> List[str]:
    """Return a new override list with ``code`` added, or removed if already present."""
    code = str(code or "").strip()
    if not code:
        return list(overrides)
    if code in overrides:
        return [existing for existing in overrides if existing != code]
    return [*overrides, code]


__all__ = ["TARIFF_DATA", "TariffEntry", "lookup_tariff", "normalize_hs_code", "toggle_override"]
