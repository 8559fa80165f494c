from typing import List
from pydantic import BaseModel, Field


class SecurityContext(BaseModel):
    """Security policy applied to a script before it runs"""

    is_trusted_source: bool = Field(
        default=False, description="Script comes from workflow configuration, not generated content"
    )
    blocked_commands: List[str] = Field(default_factory=list, description="Extra substrings to reject")
    max_file_size: int = Field(default=10 * 1024, ge=0, description="Maximum script size in bytes (0 disables)")


class ScriptValidationResult(BaseModel):
    """Outcome of script security validation"""

    is_secure: bool = True
    violations: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    sanitized_script: str = ""

