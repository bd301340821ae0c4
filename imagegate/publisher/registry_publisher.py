"""Pushes a gated image to a registry and optionally signs it."""

import logging
import re

from imagegate.consts import (
    COSIGN_PATH,
    DOCKER_PATH,
    ERROR_OUTPUT_LIMIT,
    PUSH_TIMEOUT,
    SIGN_TIMEOUT,
)
from imagegate.errors import DigestMismatchError, PublishError
from imagegate.models.model_build import BuildResult, PublishResult
from imagegate.models.model_policy import Verdict
from imagegate.process import CommandResult, run_command

logger = logging.getLogger(__name__)

PUSH_DIGEST_PATTERN = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


def repository_of(reference: str) -> str:
    """Strip tag and digest from an image reference.

    >>> repository_of("registry:5000/team/app:1.2")
    'registry:5000/team/app'
    """
    name = reference.split("@", 1)[0]
    head, _, last = name.rpartition("/")
    if ":" in last:
        last = last.split(":", 1)[0]
    return f"{head}/{last}" if head else last


def _tail(result: CommandResult) -> str:
    output = result.stderr.strip() or result.stdout.strip()
    return output[-ERROR_OUTPUT_LIMIT:]


class RegistryPublisher:
    """Publishes exactly the digest that passed the gate.

    Push and sign failures raise PublishError and are never retried here.
    """

    def __init__(
        self,
        docker_path: str = DOCKER_PATH,
        cosign_path: str = COSIGN_PATH,
        sign: bool = False,
        sign_key: str | None = None,
        push_timeout: int = PUSH_TIMEOUT,
        sign_timeout: int = SIGN_TIMEOUT,
    ):
        self.docker_path = docker_path
        self.cosign_path = cosign_path
        self.sign = sign
        self.sign_key = sign_key
        self.push_timeout = push_timeout
        self.sign_timeout = sign_timeout

    async def _verify_local_digest(self, build: BuildResult) -> None:
        """Check the local tag still points at the built digest."""
        result = await run_command(
            [self.docker_path, "image", "inspect", "--format", "{{.Id}}", build.image_ref],
            timeout=self.push_timeout,
        )
        if not result.success:
            raise PublishError(
                f"Cannot inspect {build.image_ref}: {_tail(result)}",
                digest=build.digest,
            )
        current = result.stdout.strip()
        if current != build.digest:
            raise DigestMismatchError(
                f"{build.image_ref} now resolves to {current}, not the gated digest",
                digest=build.digest,
                current_digest=current,
            )

    async def _sign(self, destination: str, repo_digest: str | None, digest: str) -> None:
        if not repo_digest:
            raise PublishError(
                "Registry did not report a digest; refusing to sign by tag",
                pushed=True,
                digest=digest,
                destination=destination,
            )

        reference = f"{repository_of(destination)}@{repo_digest}"
        cmd = [self.cosign_path, "sign", "--yes"]
        if self.sign_key:
            cmd.extend(["--key", self.sign_key])
        cmd.append(reference)

        logger.info(f"Signing {reference}")
        result = await run_command(cmd, timeout=self.sign_timeout)
        if not result.success:
            raise PublishError(
                f"Signing failed after push: {_tail(result)}",
                pushed=True,
                digest=digest,
                destination=destination,
            )

    async def publish(
        self, build: BuildResult, verdict: Verdict, destination: str
    ) -> PublishResult:
        """Tag, push and optionally sign the built image.

        Args:
            build: Result of the build stage
            verdict: The passing verdict for ``build.digest``
            destination: Registry reference to push to

        Returns:
            PublishResult with the registry manifest digest

        Raises:
            DigestMismatchError: The verdict or local tag refers to another digest
            PublishError: Verdict not passing, push failure or sign failure
        """
        if not verdict.passed:
            raise PublishError("Refusing to publish: verdict did not pass", digest=build.digest)
        if verdict.digest != build.digest:
            raise DigestMismatchError(
                "Refusing to publish: verdict is for a different digest",
                digest=build.digest,
                verdict_digest=verdict.digest,
            )

        await self._verify_local_digest(build)

        result = await run_command(
            [self.docker_path, "tag", build.digest, destination], timeout=self.push_timeout
        )
        if not result.success:
            raise PublishError(
                f"docker tag failed: {_tail(result)}", digest=build.digest, destination=destination
            )

        logger.info(f"Pushing {build.digest} to {destination}")
        result = await run_command([self.docker_path, "push", destination], timeout=self.push_timeout)
        if not result.success:
            message = "push timed out" if result.timed_out else f"push failed: {_tail(result)}"
            raise PublishError(message, digest=build.digest, destination=destination)

        match = PUSH_DIGEST_PATTERN.search(result.stdout)
        repo_digest = match.group(1) if match else None
        logger.info(f"Pushed {destination} ({repo_digest or 'digest not reported'})")

        if self.sign:
            await self._sign(destination, repo_digest, build.digest)

        return PublishResult(
            destination=destination,
            digest=build.digest,
            repo_digest=repo_digest,
            signed=self.sign,
        )
