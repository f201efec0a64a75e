from .storage import LocalVaultStorage, VaultEntry, VaultStorage, is_excluded, normalize_path

__all__ = [
    "LocalVaultStorage",
    "VaultEntry",
    "VaultStorage",
    "is_excluded",
    "normalize_path",
]
