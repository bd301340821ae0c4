"""Image build driver."""

from imagegate.builder.docker_builder import DIGEST_PATTERN, DockerBuilder, is_transient_failure

__all__ = ["DIGEST_PATTERN", "DockerBuilder", "is_transient_failure"]
