"""
Script security: validation policy and secure temp files for script steps.
"""

from .types import ScriptValidationResult, SecurityContext
from .script_validator import validate_script
from .temp_files import cleanup_temp_file, create_secure_temp_file

__all__ = [
    "ScriptValidationResult",
    "SecurityContext",
    "validate_script",
    "cleanup_temp_file",
    "create_secure_temp_file",
]
