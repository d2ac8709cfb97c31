"""
SecretVault: lock sensitive project files behind an encrypted sidecar.

Detects credentials, keys and dotenv files, replaces them with an
authenticated ciphertext, and restores them from the best source left:
the sidecar, the vault-home backup, or a remote document store.
"""

__version__ = "0.1.0"
