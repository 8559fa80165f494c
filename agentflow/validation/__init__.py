from .output_validator import (
    OutputValidator,
    ValidationConfig,
    ValidationRule,
    data_type,
)

__all__ = ["OutputValidator", "ValidationConfig", "ValidationRule", "data_type"]
