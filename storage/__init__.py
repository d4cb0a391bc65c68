from storage.config import (StorageConfig,)
from storage.context import (StorageContext,)
from storage.errors import (ContainerEnsureFailed, CopyFailed, InvalidInput,
                            InvalidPermissions, NotFound, PolicyEnsureFailed,
                            StorageError,)

__all__ = ['ContainerEnsureFailed', 'CopyFailed', 'InvalidInput',
           'InvalidPermissions', 'NotFound', 'PolicyEnsureFailed',
           'StorageConfig', 'StorageContext', 'StorageError']
