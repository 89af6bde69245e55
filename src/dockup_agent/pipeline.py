"""Git + docker compose command pipeline for one application.

The steps run in order inside the checkout, each as its own subprocess with
stderr folded into stdout. The first non-zero exit stops the run, the same
as joining the commands with ``&&``.

When an installation token is available the remote URL is temporarily
rewritten to carry it and restored after the reset. If fetch or reset fails
in between, the restore step does not run and the token stays in
``.git/config`` until the next successful deploy rewrites it.
"""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .configuration.models import AppRegistration
from .error_handling import DockupError, PipelineError
from .git.operations import get_remote_url, git_fetch, git_reset_hard, git_set_remote_url
from .github.auth import CredentialBroker, redact_token_url

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = -9
NOT_FOUND_EXIT_CODE = 127


@dataclass(frozen=True)
class CommandStep:
    name: str
    argv: Tuple[str, ...]

    def render(self) -> str:
        """Shell-quoted command line with any embedded token masked."""
        return redact_token_url(shlex.join(self.argv))


@dataclass(frozen=True)
class PipelineResult:
    steps: Tuple[CommandStep, ...]
    output: str
    used_token: bool


def compose_steps(compose_file: str) -> List[CommandStep]:
    return [
        CommandStep("compose-build", ("docker", "compose", "-f", compose_file, "build", "--pull")),
        CommandStep("compose-up", ("docker", "compose", "-f", compose_file, "up", "-d", "--remove-orphans")),
        CommandStep("image-prune", ("docker", "system", "prune", "-f")),
    ]


def build_steps(
    registration: AppRegistration,
    remote_url: str,
    token_url: Optional[str] = None,
) -> List[CommandStep]:
    """Return the ordered deploy steps for ``registration``."""
    branch = registration.branch
    if token_url:
        steps = [
            CommandStep("set-token-remote", git_set_remote_url(token_url)),
            CommandStep("fetch", git_fetch(branch)),
            CommandStep("reset", git_reset_hard(branch)),
            CommandStep("restore-remote", git_set_remote_url(remote_url)),
        ]
    else:
        steps = [
            CommandStep("fetch", git_fetch(branch)),
            CommandStep("reset", git_reset_hard(branch)),
        ]
    return steps + compose_steps(registration.compose_file)


class CommandPipeline:
    """Builds and runs the deploy command sequence.

    Args:
        broker: Source of token-bearing remote URLs
        step_timeout: Optional bound in seconds for each step; a step that
            exceeds it is killed and fails the run
    """

    def __init__(self, broker: CredentialBroker, step_timeout: Optional[float] = None):
        self.broker = broker
        self.step_timeout = step_timeout

    async def resolve_token_url(self, app_name: str, remote_url: str) -> Optional[str]:
        """Return a token-bearing remote URL, or None to use existing credentials."""
        if not self.broker.is_configured:
            return None
        try:
            return await self.broker.get_github_token_url(remote_url)
        except DockupError as e:
            logger.warning(f"⚠️  Failed to get GitHub token for {app_name}: {e}")
            logger.warning("   Falling back to existing git credentials")
            return None

    async def run(self, registration: AppRegistration) -> PipelineResult:
        """Sync the checkout to its branch and redeploy the compose stack.

        Raises:
            RemoteLookupError: If the checkout's remote URL cannot be read;
                nothing has run yet
            PipelineError: If a step exits non-zero
        """
        remote_url = await asyncio.to_thread(get_remote_url, registration.path)
        token_url = await self.resolve_token_url(registration.name, remote_url)
        steps = build_steps(registration, remote_url, token_url)

        logger.debug(
            f"Deploy plan for {registration.name}: " + " && ".join(step.render() for step in steps)
        )
        output = await self.execute(steps, registration.path)
        return PipelineResult(steps=tuple(steps), output=output, used_token=token_url is not None)

    async def execute(self, steps: List[CommandStep], cwd: str) -> str:
        """Run ``steps`` in ``cwd`` until one fails; return the combined output."""
        chunks: List[str] = []
        for step in steps:
            returncode, output = await self._run_step(step, cwd)
            chunks.append(output)
            if returncode != 0:
                raise PipelineError(returncode, redact_token_url("".join(chunks)), step.name)
        return redact_token_url("".join(chunks))

    async def _run_step(self, step: CommandStep, cwd: str) -> Tuple[int, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *step.argv,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            return NOT_FOUND_EXIT_CODE, f"{step.argv[0]}: {e}\n"

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.step_timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            return TIMEOUT_EXIT_CODE, f"{step.name} timed out after {self.step_timeout}s\n"
        except asyncio.CancelledError:
            logger.warning(f"⚠️  Step {step.name} cancelled, killing pid {process.pid}")
            await self._kill(process)
            raise

        return process.returncode, stdout.decode("utf-8", errors="replace")

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
