"""HTTP clients for external services."""

from task_marketplace.clients.identity_client import IdentityClient
from task_marketplace.clients.user_directory_client import UserDirectoryClient

__all__ = ["IdentityClient", "UserDirectoryClient"]
