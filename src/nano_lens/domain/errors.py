"""Exceptions raised by the capture, history and session layers."""


class NanoLensError(Exception):
    """Base class for application errors."""


class DeviceUnavailable(NanoLensError):
    """The camera or microphone could not be acquired."""


class NoActiveStream(NanoLensError):
    """A capture was requested while no stream is open."""


class InvalidRecordingState(NanoLensError):
    """Recording was started or stopped out of order."""


class RecordingFailed(NanoLensError):
    """The recorder could not be started on the live stream."""


class AnalysisFailed(NanoLensError):
    """The remote analysis call failed or returned an unusable response."""


class EditFailed(NanoLensError):
    """The remote edit call failed or returned an unusable response."""


class OperationInProgress(NanoLensError):
    """Another asynchronous operation is still outstanding."""


class InvalidTransition(NanoLensError):
    """The requested command is not valid in the current session state."""


class HistoryRecordNotFound(NanoLensError, LookupError):
    """No history record exists with the requested id."""


class UnsupportedMedia(NanoLensError, ValueError):
    """The uploaded media type is neither an image nor a video."""
