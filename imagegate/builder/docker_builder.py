"""Docker CLI wrapper that builds an image and reports its digest."""

import logging
import re
import tempfile
import time
from pathlib import Path

from imagegate.backoff import Backoff, retry_with_backoff
from imagegate.consts import BUILD_DEFAULT_TIMEOUT, BUILD_MAX_RETRIES, DOCKER_PATH, ERROR_OUTPUT_LIMIT
from imagegate.errors import BuildError
from imagegate.models.model_build import BuildResult
from imagegate.process import CommandResult, run_command

logger = logging.getLogger(__name__)

DIGEST_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")

# Failures of the daemon itself, not of the build context
_TRANSIENT_MARKERS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error during connect",
    "connection refused",
    "i/o timeout",
    "tls handshake timeout",
)


def is_transient_failure(result: CommandResult) -> bool:
    """True for build failures worth retrying (daemon unreachable, timeout)."""
    if result.success or result.not_found:
        return False
    if result.timed_out:
        return True
    stderr = result.stderr.lower()
    return any(marker in stderr for marker in _TRANSIENT_MARKERS)


class DockerBuilder:
    """Builds images with ``docker build`` and reads the digest from an iidfile."""

    def __init__(
        self,
        docker_path: str = DOCKER_PATH,
        timeout: int = BUILD_DEFAULT_TIMEOUT,
        max_retries: int = BUILD_MAX_RETRIES,
        backoff: Backoff | None = None,
    ):
        """Initialize DockerBuilder.

        Args:
            docker_path: Path to docker executable
            timeout: Build timeout in seconds
            max_retries: Retries for transient daemon errors
            backoff: Backoff policy between retries
        """
        self.docker_path = docker_path
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff or Backoff()

    def build_command(
        self,
        context: Path,
        tag: str,
        iidfile: Path,
        dockerfile: Path | None = None,
        build_args: dict[str, str] | None = None,
    ) -> list[str]:
        cmd = [self.docker_path, "build", "--iidfile", str(iidfile), "-t", tag]
        if dockerfile is not None:
            cmd.extend(["-f", str(dockerfile)])
        for key, value in (build_args or {}).items():
            cmd.extend(["--build-arg", f"{key}={value}"])
        cmd.append(str(context))
        return cmd

    @staticmethod
    def _resolve_dockerfile(context: Path, dockerfile: str | None) -> Path:
        if dockerfile is None:
            return context / "Dockerfile"
        path = Path(dockerfile)
        return path if path.is_absolute() else context / path

    async def build(
        self,
        context_path: Path | str,
        tag: str,
        dockerfile: str | None = None,
        build_args: dict[str, str] | None = None,
    ) -> BuildResult:
        """Build ``context_path`` as ``tag``.

        Args:
            context_path: Build context directory
            tag: Target tag for the local image
            dockerfile: Dockerfile path, relative to the context unless absolute
            build_args: Values passed as --build-arg

        Returns:
            BuildResult with the local image digest

        Raises:
            BuildError: Missing context, failed build or unreadable digest
        """
        context = Path(context_path)
        if not context.is_dir():
            raise BuildError(f"Build context not found: {context}", context_path=str(context))

        dockerfile_path = self._resolve_dockerfile(context, dockerfile)
        if not dockerfile_path.is_file():
            raise BuildError(f"Dockerfile not found: {dockerfile_path}", context_path=str(context))

        start = time.monotonic()
        logger.info(f"Building {tag} from {context}")

        with tempfile.TemporaryDirectory(prefix="imagegate-build-") as tmpdir:
            iidfile = Path(tmpdir) / "iid"
            cmd = self.build_command(
                context,
                tag,
                iidfile,
                dockerfile=dockerfile_path if dockerfile is not None else None,
                build_args=build_args,
            )

            result, attempts = await retry_with_backoff(
                lambda: run_command(cmd, timeout=self.timeout),
                should_retry=is_transient_failure,
                max_retries=self.max_retries,
                backoff=self.backoff,
                label=f"build of {tag}",
            )

            if result.not_found:
                raise BuildError(f"{self.docker_path} not found in PATH", context_path=str(context))
            if result.timed_out:
                raise BuildError(
                    f"Build timeout ({self.timeout}s)", context_path=str(context), attempts=attempts
                )
            if not result.success:
                raise BuildError(
                    f"docker build failed (code {result.returncode}): "
                    f"{result.stderr[-ERROR_OUTPUT_LIMIT:].strip()}",
                    context_path=str(context),
                    tag=tag,
                    attempts=attempts,
                )

            digest = iidfile.read_text(encoding="utf-8").strip() if iidfile.exists() else ""

        if not DIGEST_PATTERN.match(digest):
            raise BuildError(f"Build produced no valid image digest: {digest!r}", tag=tag)

        duration = time.monotonic() - start
        logger.info(f"Built {tag} as {digest} in {duration:.1f}s")
        return BuildResult(
            image_ref=tag,
            digest=digest,
            duration_seconds=duration,
            exit_status=result.returncode,
            context_path=str(context),
            attempts=attempts,
        )
