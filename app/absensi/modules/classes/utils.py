from __future__ import annotations

from typing import Any

from app.absensi.constants import CABERAWIT_CODES


def is_caberawit_class(cls: Any) -> bool:
    """Early-age class: its master's category code or name is CABERAWIT/PAUD."""
    category = getattr(cls, "category", None)
    if category is None:
        return False
    code = (category.code or "").upper()
    name = (category.name or "").upper()
    return code in CABERAWIT_CODES or name in CABERAWIT_CODES


def is_teacher_class(cls: Any) -> bool:
    """Classes for the teachers themselves ("Pengajar")."""
    name = getattr(cls, "name", None) or ""
    return "pengajar" in name.lower()


def is_sambung_desa_eligible(cls: Any) -> bool:
    return not is_caberawit_class(cls) and not is_teacher_class(cls)


def display_class_names(classes: list[Any]) -> dict[int, str]:
    """
    Class id -> label. Names shared by several classes (one per kelompok) get
    the kelompok appended, e.g. "Kelas 1 (Kelompok A)".
    """
    counts: dict[str, int] = {}
    for c in classes:
        counts[c.name] = counts.get(c.name, 0) + 1
    out: dict[int, str] = {}
    for c in classes:
        if counts[c.name] > 1 and c.kelompok is not None:
            out[c.id] = f"{c.name} ({c.kelompok.name})"
        else:
            out[c.id] = c.name
    return out
