"""Forward engine output to a sink as it is produced."""

from __future__ import annotations

import logging

from picolm_gateway.inference.engine import FINISH_STOP, FINISH_TOOL_CALLS, StreamSink
from picolm_gateway.inference.output import contains_framing_token, extract_tool_calls
from picolm_gateway.inference.process import RunHandle

logger = logging.getLogger(__name__)


async def stream_output(handle: RunHandle, sink: StreamSink, tool_aware: bool = False) -> str:
    """Pump lines from a started ``handle`` into ``sink``.

    Each line is one increment, forwarded verbatim with an empty finish
    reason. The first line containing a framing token ends the stream (the
    line is dropped and the engine is stopped). Deadline and cancellation
    are rechecked before every forward. Once the engine has exited cleanly,
    the sink gets one terminal call with empty content and ``stop`` or
    ``tool_calls`` (the latter only in tool-aware mode).

    If the sink raises, the engine is killed and the sink's exception
    propagates; the sink is not called again. Engine failures raise
    without a terminal call; increments already forwarded stay delivered.

    Returns the accumulated content.
    """
    handle.open_stream()
    chunks: list[str] = []

    while True:
        line = await handle.readline()
        if not line:
            break
        if contains_framing_token(line):
            logger.debug("Framing token in stream, stopping engine: %r", line)
            handle.stop()
            break

        handle.check()
        chunks.append(line)
        try:
            await sink(line, "")
        except BaseException:
            handle.kill()
            raise

    returncode = await handle.wait()
    handle.raise_for_status(returncode)

    output = "".join(chunks).strip()
    is_tool_call = tool_aware and bool(output) and bool(extract_tool_calls(output))
    finish_reason = FINISH_TOOL_CALLS if is_tool_call else FINISH_STOP
    await sink("", finish_reason)
    return output
