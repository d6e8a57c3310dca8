from signal_ledger.backup.client import BackupClient, push_store, restore_store

__all__ = ["BackupClient", "push_store", "restore_store"]
