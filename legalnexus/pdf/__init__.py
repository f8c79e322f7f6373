# PDF module
from legalnexus.pdf.burn import (
    BurnResult,
    FieldBurner,
    FieldRect,
    compute_field_rect,
    get_field_burner,
    is_pdf,
)

__all__ = [
    "BurnResult",
    "FieldBurner",
    "FieldRect",
    "compute_field_rect",
    "get_field_burner",
    "is_pdf",
]
