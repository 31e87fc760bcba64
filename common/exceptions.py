"""Custom exception classes shared by the archiver and the retriever."""


class ColdVaultError(Exception):
    """
    Base exception class for all coldvault errors.
    """
    pass


class ValidationError(ColdVaultError):
    """
    Raised when a retrieval request is malformed or cannot be resolved.
    """
    pass


class TransientRemoteError(ColdVaultError):
    """
    Raised when the storage service is unreachable, throttles, or returns a
    response that is missing expected fields.
    """
    pass


class IntegrityError(ColdVaultError):
    """
    Raised on a checksum or size mismatch: upload completion rejected by the
    service, a fetched block that does not match its tree hash, or a local
    file that no longer matches the ledger.
    """
    pass


class JobFailedError(ColdVaultError):
    """
    Raised when a retrieval job reports failure or an unknown status.
    """
    pass


class CapacityError(ColdVaultError):
    """
    Raised when there is not enough local free space for a transfer.
    """
    pass


class UploadError(ColdVaultError):
    """
    Raised when an archive could not be uploaded.
    """
    pass


class RetrievalError(ColdVaultError):
    """
    Raised when an archive could not be retrieved.
    """
    pass


class EncryptionError(ColdVaultError):
    """
    Raised when the external encryptor or decryptor fails.
    """
    pass
