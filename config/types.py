from pydantic import BaseModel, Field


class EngineSettings(BaseModel):
    """Typed snapshot of the engine settings"""

    retry_backoff_cap_seconds: float = 30.0
    retry_jitter_max_seconds: float = 1.0
    default_max_attempts: int = Field(default=1, ge=1)
    script_timeout_seconds: float = 30.0
    script_max_size_bytes: int = 10240
    script_shell: str = "bash"
    script_env_prefix: str = "AGENT_"
    interactive_timeout_seconds: float = 300.0
    loop_default_max_iterations: int = 10
    loop_max_iterations_limit: int = 100
    parallel_execution: bool = True
    llm_tools_max_calls: int = 3
    llm_tools_max_file_size: int = 10240
