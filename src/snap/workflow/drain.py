from __future__ import annotations

import asyncio
import logging
from typing import TextIO

from snap import ui
from snap.backends.base import CONTINUE_FLAG, FAST
from snap.directives import DirectiveQueue
from snap.workflow.steps import StepRunner, build_prompt

logger = logging.getLogger(__name__)


async def drain_queue(
    queue: DirectiveQueue,
    step_runner: StepRunner,
    output: TextIO,
    *,
    no_commit: bool = True,
) -> list[BaseException]:
    """Run every queued directive in order on the current conversation.

    Failed directives are reported and collected; draining continues. Once
    the current task is cancelled the remaining directives are skipped and a
    ``CancelledError`` is appended to the result instead of being raised.
    """
    prompts = queue.drain_all()
    errors: list[BaseException] = []
    total = len(prompts)
    current = asyncio.current_task()
    for index, prompt in enumerate(prompts, start=1):
        if current is not None and current.cancelling():
            for skipped in prompts[index - 1 :]:
                output.write(ui.info(f"Skipped queued prompt: {skipped}"))
            errors.append(asyncio.CancelledError())
            break
        output.write(ui.queue_running(prompt, index, total))
        try:
            await step_runner.run_step(
                f"Queued prompt {index}/{total}",
                FAST,
                CONTINUE_FLAG,
                build_prompt(prompt, no_commit=no_commit),
            )
        except asyncio.CancelledError:
            for skipped in prompts[index:]:
                output.write(ui.info(f"Skipped queued prompt: {skipped}"))
            errors.append(asyncio.CancelledError())
            break
        except Exception as exc:
            logger.debug("queued prompt %d/%d failed: %s", index, total, exc)
            output.write(ui.error(f"Queued prompt failed: {exc}") + "\n")
            errors.append(exc)
    return errors
