"""
Script Step

Validates a shell script, writes it to a private temp file and runs it with
the execution data exported as environment variables.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, UTC
from typing import Any, Dict, Optional

import psutil

from ...runtime_data import ExecutionContext
from ...security import (
    SecurityContext,
    cleanup_temp_file,
    create_secure_temp_file,
    validate_script,
)
from ..errors import ConfigurationError, ScriptSecurityError, StepExecutionError
from .base import BaseStepExecutor

logger = logging.getLogger(__name__)

TRUSTED_SOURCE = "config"
TEMP_FILE_PREFIX = "agent-script-"


def _log_with_context(log_level: int, msg: str, context: Optional[Dict[str, Any]] = None) -> None:
    """Helper function for structured logging with context

    Args:
        log_level: The logging level to use
        msg: The message to log
        context: Optional dictionary of contextual information
    """
    if context is None:
        context = {}

    context["timestamp"] = datetime.now(UTC).isoformat()

    structured_msg = f"{msg} | Context: {json.dumps(context, default=str)}"
    logger.log(log_level, structured_msg)


def kill_process_tree(pid: int) -> None:
    """Kill a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    for child in parent.children(recursive=True):
        try:
            child.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    try:
        parent.kill()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass


class ScriptStep(BaseStepExecutor):
    """
    Run ``config.script`` with the configured shell.

    Config keys:
        script: Script text (required)
        source: ``config`` marks the script as trusted
        blocked_commands: Extra substrings the script may not contain
        timeout: Seconds before the process tree is killed

    String values of the data bag are exported as ``AGENT_<key>``. Output is
    the combined stdout/stderr text.
    """

    def security_context(self) -> SecurityContext:
        blocked = self.config.get("blocked_commands") or []
        if not isinstance(blocked, list):
            raise ConfigurationError("blocked_commands must be a list")
        return SecurityContext(
            is_trusted_source=self.config.get("source") == TRUSTED_SOURCE,
            blocked_commands=[cmd for cmd in blocked if isinstance(cmd, str)],
            max_file_size=self.runtime.settings.script_max_size_bytes,
        )

    def timeout(self) -> float:
        timeout = self.config.get("timeout")
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            return float(timeout)
        return self.runtime.settings.script_timeout_seconds

    def environment(self, context: ExecutionContext) -> Dict[str, str]:
        prefix = self.runtime.settings.script_env_prefix
        env = dict(os.environ)
        for key, value in context.data_snapshot().items():
            if isinstance(value, str):
                env[f"{prefix}{key}"] = value
        return env

    async def execute(self, context: ExecutionContext) -> Any:
        script = self.require_string("script", "script not specified in step config")
        security = self.security_context()

        _log_with_context(
            logging.INFO,
            "Validating script",
            {
                "step": self.step.name,
                "trusted_source": security.is_trusted_source,
                "script_length": len(script),
            },
        )
        validation = validate_script(script, security)
        if not validation.is_secure:
            _log_with_context(
                logging.ERROR,
                "Script failed security validation",
                {"step": self.step.name, "violations": validation.violations},
            )
            raise ScriptSecurityError(validation.violations)
        if validation.warnings:
            _log_with_context(
                logging.WARNING,
                "Script validation warnings",
                {"step": self.step.name, "warnings": validation.warnings},
            )

        temp_path = create_secure_temp_file(validation.sanitized_script, TEMP_FILE_PREFIX)
        try:
            return await self.run_script(temp_path, context)
        finally:
            try:
                cleanup_temp_file(temp_path)
            except (OSError, ValueError) as e:
                _log_with_context(
                    logging.ERROR,
                    "Failed to cleanup temp file",
                    {"step": self.step.name, "file": temp_path, "error": str(e)},
                )

    async def run_script(self, path: str, context: ExecutionContext) -> str:
        timeout = self.timeout()
        process = await asyncio.create_subprocess_exec(
            self.runtime.settings.script_shell,
            path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=self.environment(context),
        )
        _log_with_context(
            logging.DEBUG,
            "Script process started",
            {"step": self.step.name, "pid": process.pid, "timeout": timeout},
        )

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            kill_process_tree(process.pid)
            await process.wait()
            _log_with_context(
                logging.ERROR,
                "Script execution timed out",
                {"step": self.step.name, "pid": process.pid, "timeout": timeout},
            )
            raise StepExecutionError(
                f"script execution failed: timed out after {timeout}s",
                step_name=self.step.name,
            )
        except asyncio.CancelledError:
            kill_process_tree(process.pid)
            await process.wait()
            raise

        output = stdout.decode(errors="replace") if stdout else ""
        if process.returncode != 0:
            _log_with_context(
                logging.ERROR,
                "Script execution failed",
                {
                    "step": self.step.name,
                    "return_code": process.returncode,
                    "output": output,
                },
            )
            raise StepExecutionError(
                f"script execution failed: exit code {process.returncode}",
                step_name=self.step.name,
                partial_output=output,
            )

        _log_with_context(
            logging.INFO,
            "Script executed successfully",
            {"step": self.step.name, "output_length": len(output)},
        )
        return output
