"""OpenClaw runner -- executes tasks through the `openclaw agent` CLI.

The CLI is invoked with --json; only the agent's reply payloads are kept.
Gateway model errors come back as an 'ERROR: ...' sentinel string so the
fallback runner can recognize them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from core.errors import RunnerError
from core.models.brains import BrainConfig
from core.models.tasks import Task

logger = logging.getLogger(__name__)

_MODEL_ERROR_RE = re.compile(r"no models match|model restrictions|404", re.IGNORECASE)
NO_OUTPUT = "(no agent output)"


def _dedupe(texts: list[str]) -> list[str]:
    """Drop texts that contain, or are contained in, an earlier one."""
    unique: list[str] = []
    for text in texts:
        if not any(seen in text or text in seen for seen in unique):
            unique.append(text)
    return unique


def parse_output(stdout: str) -> str:
    """Extract agent-visible text from `openclaw agent --json` output.

    Non-JSON output is returned unchanged.
    """
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        return stdout
    if not isinstance(data, dict):
        return stdout

    result: dict[str, Any] = data.get("result") if isinstance(data.get("result"), dict) else {}

    payloads = result.get("payloads")
    if isinstance(payloads, list):
        texts = [
            p["text"].strip()
            for p in payloads
            if isinstance(p, dict) and isinstance(p.get("text"), str) and p["text"].strip()
        ]
        unique = _dedupe(texts)
        if unique:
            return "\n\n".join(unique)

    for candidate in (data.get("error"), result.get("error"), result.get("message"), data.get("message")):
        if candidate:
            if isinstance(candidate, str) and _MODEL_ERROR_RE.search(candidate):
                return f"ERROR: {candidate}"
            break

    for summary in (result.get("summary"), data.get("summary"), result.get("status"), data.get("status")):
        if isinstance(summary, str) and summary:
            return f"{NO_OUTPUT} {summary}"

    return NO_OUTPUT


def build_prompt(task: Task, brain_description: str) -> str:
    parts = [
        "You are executing a task for the brain with this context:",
        f"\nContext: {brain_description}",
        f"\nYour task is: {task.title}",
    ]
    if task.description:
        parts.append(f"\nTask Details: {task.description}")
    return "".join(parts)


class OpenClawRunner:
    """TaskRunner backed by the OpenClaw CLI.

    Each brain maps to an agent id (BrainConfig.agent_id, or the brain id).
    `agent_override` forces one agent for every brain; the fallback runner
    uses it.
    """

    def __init__(
        self,
        brains: list[BrainConfig],
        cli_path: str = "openclaw",
        thinking: str | None = "low",
        timeout_seconds: float = 600,
        agent_override: str | None = None,
    ) -> None:
        self._brains = {b.id: b for b in brains}
        self._cli_path = cli_path
        self._thinking = thinking
        self._timeout = timeout_seconds
        self._agent_override = agent_override

    @property
    def name(self) -> str:
        return "openclaw" if self._agent_override is None else f"openclaw:{self._agent_override}"

    def agent_for(self, brain_id: str) -> str:
        if self._agent_override:
            return self._agent_override
        brain = self._brains.get(brain_id)
        if brain is None:
            raise RunnerError(f"No brain config for {brain_id}", {"brain_id": brain_id})
        return brain.agent_id or brain.id

    def build_command(self, agent_id: str, prompt: str) -> list[str]:
        cmd = [self._cli_path, "agent", "--agent", agent_id]
        if self._thinking:
            cmd += ["--thinking", self._thinking]
        cmd += ["--json", "--message", prompt]
        return cmd

    async def execute(self, task: Task) -> None:
        agent_id = self.agent_for(task.brain_id)
        brain = self._brains.get(task.brain_id)
        prompt = build_prompt(task, brain.description if brain else "")
        logger.info(
            "Running task %s with agent %s (prompt %d chars, model=%s)",
            task.id, agent_id, len(prompt), task.model_override,
        )
        task.output = await self.run_agent(agent_id, prompt)

    async def run_agent(self, agent_id: str, prompt: str) -> str:
        cmd = self.build_command(agent_id, prompt)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RunnerError(f"Could not start {self._cli_path}: {exc}", {"agent_id": agent_id}) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RunnerError(
                f"OpenClaw agent {agent_id} timed out after {self._timeout:.0f}s",
                {"agent_id": agent_id},
            )

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise RunnerError(
                f"OpenClaw agent {agent_id} exited with {proc.returncode}: {err[:200] or 'no stderr'}",
                {"agent_id": agent_id, "exit_code": proc.returncode},
            )
        if err:
            logger.warning("OpenClaw stderr for agent %s: %s", agent_id, err[:500])

        logger.info("OpenClaw agent %s returned %d chars", agent_id, len(out))
        return parse_output(out)
