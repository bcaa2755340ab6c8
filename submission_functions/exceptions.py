"""Error taxonomy for the submission pipeline.

Anything raised before the derived artifact is persisted aborts the request
and is mapped to a response by the handler. Metadata recording never raises
these to the caller.
"""


class SubmissionError(Exception):
    """Base class for errors that abort a submission"""
    status_code = 500
    public_message = 'process failed'


class InputError(SubmissionError):
    """User-correctable request problem (no file, bad form)"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.public_message = message


class CapacityError(SubmissionError):
    """Payload exceeds the configured size ceiling"""
    status_code = 413
    public_message = 'file too large'

    def __init__(self, message: str, limit_mb=None):
        super().__init__(message)
        self.limit_mb = limit_mb


class UnsupportedFormatError(SubmissionError):
    """Input bytes are not a decodable image"""
    status_code = 415
    public_message = 'unsupported image format'


class StorageError(SubmissionError):
    """Object store write/read failed"""
    status_code = 500
    public_message = 'storage failed'


class StorageAuthError(StorageError):
    """Credential, signature or permission failure against the object store"""
    status_code = 403
    public_message = 's3 access denied (check IAM keys/policy/bucket region)'


class StoragePayloadTooLargeError(CapacityError, StorageError):
    """The object store refused the payload size"""
    status_code = 413


class ConfigurationError(SubmissionError):
    """Required process configuration is missing"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.public_message = message


class RecordStoreError(Exception):
    """Record store call failed; only ever logged"""

    def __init__(self, message: str, status=None, code=None):
        super().__init__(message)
        self.status = status
        self.code = code
