from cryptography.fernet import Fernet

from ledger_sync.config import settings


def get_fernet_key() -> Fernet:
    """Returns the Fernet cipher built from ``ENCRYPTION_KEY``."""
    if not settings.encryption_key:
        raise ValueError("ENCRYPTION_KEY is not configured; cannot store ledger tokens")
    return Fernet(settings.encryption_key.encode('utf-8'))


def encrypt_data(data: str) -> str:
    """Encrypts a token for storage."""
    f = get_fernet_key()
    return f.encrypt(data.encode('utf-8')).decode('utf-8')


def decrypt_data(encrypted_data: str) -> str:
    """Decrypts a stored token."""
    f = get_fernet_key()
    return f.decrypt(encrypted_data.encode('utf-8')).decode('utf-8')
