"""Interactive tool that asks the user a question on the terminal."""

import asyncio
import concurrent.futures
import logging
import sys
import threading
from typing import Any, Dict, Optional, TextIO

from config import settings_manager
from ..interfaces import ToolInterface
from .registry import ToolError

logger = logging.getLogger(__name__)


class AskUserTool(ToolInterface):
    """
    Ask the user for input.

    Prints the question and waits for one line of input, bounded by a
    timeout (default from the ``interactive_timeout_seconds`` setting).
    Returns ``{"response": <line>, "success": True}``.

    Lines are read on a daemon thread owned by the tool. A read that outlives
    its timeout stays pending and the next question waits on that same read,
    so a late answer is not lost and blocked readers do not pile up.
    """

    def __init__(
        self,
        input_stream: Optional[TextIO] = None,
        output_stream: Optional[TextIO] = None,
    ):
        self._input_stream = input_stream
        self._output_stream = output_stream
        self._pending_read: Optional[concurrent.futures.Future] = None

    @property
    def name(self) -> str:
        return "ask_user"

    @property
    def description(self) -> str:
        return "Ask user for input"

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "question": {"type": "string"},
                "timeout": {"type": "number"},
                "default_response": {"type": "string"},
            },
            "required": ["question"],
        }

    async def execute_tool(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        question = arguments.get("question")
        if not isinstance(question, str):
            raise ToolError("question parameter is required and must be a string")

        timeout = arguments.get("timeout")
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool):
            timeout = settings_manager.get_setting("interactive_timeout_seconds", 300.0)

        output = self._output_stream or sys.stdout
        output.write(question + " ")
        output.flush()

        pending = self._start_read(self._input_stream or sys.stdin)
        try:
            line = await asyncio.wait_for(
                asyncio.shield(asyncio.wrap_future(pending)), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise ToolError(f"user input timeout after {timeout}s")
        except OSError as e:
            raise ToolError(f"failed to read user input: {e}")
        finally:
            if pending.done():
                self._pending_read = None

        if line == "":
            default_response = arguments.get("default_response")
            if not isinstance(default_response, str):
                raise ToolError("failed to read user input: input stream closed")
            logger.info("Input stream closed, using default response")
            return {"response": default_response, "success": True}

        return {"response": line.strip(), "success": True}

    def _start_read(self, input_stream: TextIO) -> concurrent.futures.Future:
        if self._pending_read is not None:
            logger.debug("Waiting on the previous unanswered read")
            return self._pending_read

        future: concurrent.futures.Future = concurrent.futures.Future()

        def read():
            try:
                future.set_result(input_stream.readline())
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=read, name="ask-user-reader", daemon=True).start()
        self._pending_read = future
        return future
