"""Errors raised while reading input and presenting the timeline."""


class TimelineError(Exception):
    """Base class for errors that stop a run before or during rendering."""


class InputSourceError(TimelineError):
    """Raised when no usable line source can be opened."""


class SubprocessError(TimelineError):
    """Raised when the test subprocess cannot be started or crashes."""


class RenderError(TimelineError):
    """Raised when the HTML page cannot be rendered."""


class BrowserError(TimelineError):
    """Raised when the default browser cannot be launched."""
