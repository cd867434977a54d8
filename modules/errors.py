"""Error types shared by the encode, decode, camera and history layers."""

from __future__ import annotations


class QRAssistantError(RuntimeError):
    """Base class for failures surfaced to the user interface."""


class ValidationError(QRAssistantError):
    """Input rejected before any downstream call was made."""


class EncodeFault(QRAssistantError):
    """The QR encoder raised while rendering a symbol."""


class DecodeFault(QRAssistantError):
    """The image could not be read or the decoder itself failed.

    A decode that runs but finds no symbol is not a fault; see
    ``modules.pipelines.decoder.DecodeResult``.
    """


class PersistenceCorrupt(QRAssistantError):
    """A persisted history snapshot could not be parsed."""


class PersistenceUnavailable(QRAssistantError):
    """The storage medium rejected a write or delete."""


class DeviceAccessDenied(QRAssistantError):
    """The camera could not be opened."""
