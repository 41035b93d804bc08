"""
app/validators package marker.
"""

from app.validators.inventory_validator import (
    is_valid_barcode,
    is_valid_email,
    is_valid_serie,
    parse_car_data,
    validate_scan_input,
)

__all__ = [
    "is_valid_barcode",
    "is_valid_email",
    "is_valid_serie",
    "parse_car_data",
    "validate_scan_input",
]
