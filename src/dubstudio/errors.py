"""
Exception hierarchy for the localization studio.
"""


class StudioError(Exception):
    """Base class for all dubstudio errors."""


class ConfigurationError(StudioError):
    """Missing API key, unknown provider or other bad settings."""


class CollaboratorError(StudioError):
    """A remote backend (speech recognition, translation, synthesis) failed."""


class TranscriptionError(CollaboratorError):
    pass


class TranslationError(CollaboratorError):
    pass


class SynthesisError(CollaboratorError):
    pass


class MediaDecodeError(StudioError):
    """Source video or synthesized audio could not be probed or decoded."""


class RenderResourceError(StudioError):
    """Raster target, frame decoder or encoder sink unavailable or broken."""


class RenderBusyError(StudioError):
    """A render was requested while another one is still in flight."""


class OperationCancelled(StudioError):
    """User-initiated cancellation. Not a failure."""


class AbortedByCaller(OperationCancelled):
    """Raised at the API boundary when the caller's cancel token fires."""
