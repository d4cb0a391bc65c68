from backup.pending import (PendingBackupSource, TagQueryPendingSource,)
from backup.reconciler import (BackupReconciler, BackupReport,)
from backup.scheduler import (BackupScheduler,)

__all__ = ['BackupReconciler', 'BackupReport', 'BackupScheduler',
           'PendingBackupSource', 'TagQueryPendingSource']
