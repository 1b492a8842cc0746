"""Exceptions raised by the upload pipeline."""


class UploaderError(Exception):
    """Base class for uploader errors."""


class DiscoveryFailure(UploaderError):
    """Traversal of a drop payload failed; the batch never starts."""


class UnsupportedType(UploaderError):
    """File type is not in the supported image set."""


class NoValidImagesError(UploaderError):
    """A drop contained no supported images."""

    def __init__(self, message: str = "No valid images found"):
        super().__init__(message)


class CompressionFailure(UploaderError):
    """Image could not be compressed. The original payload is used instead."""


class UploadFailure(UploaderError):
    """Storage rejected or failed to acknowledge an object write."""


class SessionAborted(UploaderError):
    """Upload session was torn down before the batch resolved."""


class AuthenticationRequired(UploaderError):
    """No user identity is available for the upload."""


class InvalidTransition(UploaderError):
    """A tracked file was moved to a status its current status does not allow."""
