"""
Storage context: the one place Azure clients are created.

A StorageContext holds the async service client, the primary and backup
container clients and the StorageConfig. It is built once per process and
handed to ObjectStore, AccessIssuer and the backup components.

Bootstrap:
  - ensure_containers(): create primary + backup if missing (fatal on error)
  - ensure_permanent_policy(): create the stored access policy used by
    permanent SAS URLs (non-fatal, logged)
"""

from typing import Optional

from azure.core.exceptions import AzureError, ResourceExistsError
from azure.storage.blob import AccessPolicy, ContainerSasPermissions
from azure.storage.blob.aio import BlobServiceClient, ContainerClient
from loguru import logger

from storage.config import StorageConfig
from storage.errors import ContainerEnsureFailed, PolicyEnsureFailed


class StorageContext:

    def __init__(
        self,
        config: StorageConfig,
        primary: ContainerClient,
        backup: ContainerClient,
        service_client: Optional[BlobServiceClient] = None,
    ):
        self.config = config
        self.primary = primary
        self.backup = backup
        self.service_client = service_client

    @classmethod
    def from_config(cls, config: Optional[StorageConfig] = None) -> "StorageContext":
        """Create the Azure clients described by the configuration."""
        config = config or StorageConfig()
        config.validate()

        if config.connection_string:
            service_client = BlobServiceClient.from_connection_string(config.connection_string)
        else:
            service_client = BlobServiceClient(config.account_url, credential=config.account_key)
        logger.info("✓ Azure Blob Storage client initialized")

        return cls(
            config=config,
            primary=service_client.get_container_client(config.container_name),
            backup=service_client.get_container_client(config.backup_container_name),
            service_client=service_client,
        )

    @property
    def account_name(self) -> str:
        return self.config.account_name

    @property
    def account_key(self) -> str:
        return self.config.account_key

    async def ensure_containers(self) -> None:
        for container in (self.primary, self.backup):
            try:
                await container.create_container()
                logger.info(f"Created container: {container.container_name}")
            except ResourceExistsError:
                logger.debug(f"Container exists: {container.container_name}")
            except AzureError as e:
                logger.error(f"❌ Could not ensure container {container.container_name}: {e}")
                raise ContainerEnsureFailed(
                    f"Could not ensure container {container.container_name}: {e}"
                ) from e

    async def ensure_permanent_policy(self) -> bool:
        """
        Make sure the stored access policy backing permanent SAS URLs exists.

        The policy carries read permission and no expiry; deleting it later
        revokes every permanent URL issued against it. Returns True when the
        policy is in place. Failures are logged and swallowed.
        """
        policy_id = self.config.permanent_policy_id
        if not policy_id:
            return False

        try:
            current = await self.primary.get_container_access_policy()
            identifiers = {
                identifier.id: identifier.access_policy
                for identifier in current.get("signed_identifiers") or []
            }
            if policy_id in identifiers:
                logger.info(f"Stored access policy '{policy_id}' exists.")
                return True

            identifiers[policy_id] = AccessPolicy(permission=ContainerSasPermissions(read=True))
            await self.primary.set_container_access_policy(
                signed_identifiers=identifiers,
                public_access=current.get("public_access"),
            )
            logger.info(f"✓ Created stored access policy '{policy_id}'.")
            return True
        except AzureError as e:
            error = PolicyEnsureFailed(f"Could not ensure stored access policy '{policy_id}': {e}")
            logger.warning(f"{error} (non-fatal)")
            return False

    async def bootstrap(self) -> None:
        await self.ensure_containers()
        await self.ensure_permanent_policy()

    async def close(self) -> None:
        if self.service_client is not None:
            await self.service_client.close()
