"""Registry publishing."""

from imagegate.publisher.registry_publisher import RegistryPublisher, repository_of

__all__ = ["RegistryPublisher", "repository_of"]
