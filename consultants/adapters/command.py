"""Local command adapter: pipes the prompt to an external CLI over stdin."""

import asyncio
import logging

from config.config_loader import AgentSpec
from consultants.adapters.base import AdapterOutput, AgentAdapter, compose_prompt
from consultants.errors import AgentProcessError, AgentTimeout

logger = logging.getLogger(__name__)


class CommandAdapter(AgentAdapter):
    """Runs spec.command as a subprocess; stdout is the raw answer."""

    def __init__(self, spec: AgentSpec) -> None:
        super().__init__(spec)
        if not spec.command:
            raise AgentProcessError(spec.name, "No command configured")

    async def invoke(self, prompt: str, context: str | None, timeout: float) -> AdapterOutput:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._spec.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AgentProcessError(self._spec.name, f"Could not start {self._spec.command[0]}: {exc}") from exc

        payload = compose_prompt(prompt, context).encode("utf-8")
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout=timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise AgentTimeout(self._spec.name, f"Timeout after {timeout}s") from exc
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            details = stderr.decode("utf-8", errors="replace").strip().splitlines()[:5]
            logger.debug("%s stderr: %s", self._spec.name, " | ".join(details))

        return AdapterOutput(
            raw=stdout.decode("utf-8", errors="replace"),
            exit_status=proc.returncode or 0,
        )
