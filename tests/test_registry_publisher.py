"""Tests for RegistryPublisher."""

from unittest.mock import AsyncMock, patch

import pytest

from conftest import DIGEST, OTHER_DIGEST
from imagegate.errors import DigestMismatchError, PublishError
from imagegate.models.model_build import BuildResult
from imagegate.models.model_policy import Verdict
from imagegate.process import CommandResult
from imagegate.publisher.registry_publisher import RegistryPublisher, repository_of

REPO_DIGEST = "sha256:" + "c" * 64
DESTINATION = "registry.example.com/team/app:1.0"


class FakeDocker:
    """Scripted docker/cosign CLI recording every command."""

    def __init__(self, local_digest: str = DIGEST, push_ok: bool = True, sign_ok: bool = True):
        self.local_digest = local_digest
        self.push_ok = push_ok
        self.sign_ok = sign_ok
        self.commands: list[list[str]] = []

    async def run(self, cmd: list[str], timeout=None, env=None, cwd=None) -> CommandResult:
        self.commands.append(cmd)
        if cmd[:3] == ["docker", "image", "inspect"]:
            return CommandResult(returncode=0, stdout=f"{self.local_digest}\n", stderr="")
        if cmd[:2] == ["docker", "push"]:
            if not self.push_ok:
                return CommandResult(returncode=1, stdout="", stderr="denied: requested access to the resource is denied")
            return CommandResult(
                returncode=0,
                stdout=f"1.0: digest: {REPO_DIGEST} size: 1570\n",
                stderr="",
            )
        if cmd[0] == "cosign":
            if not self.sign_ok:
                return CommandResult(returncode=1, stdout="", stderr="no identity token")
            return CommandResult(returncode=0, stdout="", stderr="")
        return CommandResult(returncode=0, stdout="", stderr="")

    def ran(self, *prefix: str) -> bool:
        return any(cmd[: len(prefix)] == list(prefix) for cmd in self.commands)


class TestRegistryPublisher:
    """Tests for RegistryPublisher class."""

    @pytest.mark.asyncio
    async def test_publish(self, build_result: BuildResult, passing_verdict: Verdict) -> None:
        docker = FakeDocker()
        with patch("imagegate.publisher.registry_publisher.run_command", side_effect=docker.run):
            result = await RegistryPublisher().publish(build_result, passing_verdict, DESTINATION)

        assert result.digest == DIGEST
        assert result.repo_digest == REPO_DIGEST
        assert result.destination == DESTINATION
        assert not result.signed
        assert docker.ran("docker", "tag", DIGEST, DESTINATION)
        assert docker.ran("docker", "push", DESTINATION)
        assert not docker.ran("cosign")

    @pytest.mark.asyncio
    async def test_refuses_failed_verdict(self, build_result: BuildResult) -> None:
        mock = AsyncMock()
        with patch("imagegate.publisher.registry_publisher.run_command", mock):
            with pytest.raises(PublishError, match="did not pass"):
                await RegistryPublisher().publish(
                    build_result, Verdict(digest=DIGEST, passed=False), DESTINATION
                )
        mock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refuses_verdict_for_other_digest(self, build_result: BuildResult) -> None:
        mock = AsyncMock()
        with patch("imagegate.publisher.registry_publisher.run_command", mock):
            with pytest.raises(DigestMismatchError):
                await RegistryPublisher().publish(
                    build_result, Verdict(digest=OTHER_DIGEST, passed=True), DESTINATION
                )
        mock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refuses_when_tag_moved(self, build_result: BuildResult, passing_verdict: Verdict) -> None:
        docker = FakeDocker(local_digest=OTHER_DIGEST)
        with patch("imagegate.publisher.registry_publisher.run_command", side_effect=docker.run):
            with pytest.raises(DigestMismatchError) as exc_info:
                await RegistryPublisher().publish(build_result, passing_verdict, DESTINATION)

        assert exc_info.value.context["current_digest"] == OTHER_DIGEST
        assert not docker.ran("docker", "push")

    @pytest.mark.asyncio
    async def test_push_failure_not_retried(self, build_result: BuildResult, passing_verdict: Verdict) -> None:
        docker = FakeDocker(push_ok=False)
        with patch("imagegate.publisher.registry_publisher.run_command", side_effect=docker.run):
            with pytest.raises(PublishError, match="denied") as exc_info:
                await RegistryPublisher().publish(build_result, passing_verdict, DESTINATION)

        assert exc_info.value.pushed is False
        assert sum(1 for cmd in docker.commands if cmd[:2] == ["docker", "push"]) == 1

    @pytest.mark.asyncio
    async def test_sign_by_repository_digest(self, build_result: BuildResult, passing_verdict: Verdict) -> None:
        docker = FakeDocker()
        publisher = RegistryPublisher(sign=True, sign_key="cosign.key")
        with patch("imagegate.publisher.registry_publisher.run_command", side_effect=docker.run):
            result = await publisher.publish(build_result, passing_verdict, DESTINATION)

        assert result.signed
        assert docker.ran(
            "cosign", "sign", "--yes", "--key", "cosign.key", f"registry.example.com/team/app@{REPO_DIGEST}"
        )

    @pytest.mark.asyncio
    async def test_sign_failure_after_push(self, build_result: BuildResult, passing_verdict: Verdict) -> None:
        docker = FakeDocker(sign_ok=False)
        with patch("imagegate.publisher.registry_publisher.run_command", side_effect=docker.run):
            with pytest.raises(PublishError, match="Signing failed") as exc_info:
                await RegistryPublisher(sign=True).publish(build_result, passing_verdict, DESTINATION)

        assert exc_info.value.pushed is True


class TestRepositoryOf:
    """Tests for repository_of."""

    @pytest.mark.parametrize(
        ("reference", "expected"),
        [
            ("app:1.0", "app"),
            ("app", "app"),
            ("registry:5000/team/app:1.2", "registry:5000/team/app"),
            ("registry:5000/team/app", "registry:5000/team/app"),
            (f"ghcr.io/org/app@{DIGEST}", "ghcr.io/org/app"),
        ],
    )
    def test_strips_tag_and_digest(self, reference: str, expected: str) -> None:
        assert repository_of(reference) == expected
