from storage.object_store.access import (AccessGrant, AccessIssuer,
                                         parse_permissions,)
from storage.object_store.buckets import (BACKUP_DONE, BACKUP_NEEDED,
                                          BACKUP_TAG, BlobInfo, CopyResult,
                                          ObjectStore, ReceiptStream,)
from storage.object_store.paths import (ReceiptKey, build_path,
                                        parse_receipt_date,)

__all__ = ['AccessGrant', 'AccessIssuer', 'BACKUP_DONE', 'BACKUP_NEEDED',
           'BACKUP_TAG', 'BlobInfo', 'CopyResult', 'ObjectStore',
           'ReceiptKey', 'ReceiptStream', 'build_path', 'parse_permissions',
           'parse_receipt_date']
