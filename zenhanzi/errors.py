"""User-facing validation errors raised by the practice session."""


class PracticeError(Exception):
    """Base class; the message is safe to show to the user."""


class ValidationError(PracticeError, ValueError):
    pass


class EmptyCanvasError(ValidationError):
    pass


class EmptyPaletteError(ValidationError):
    pass


class InvalidActionError(PracticeError):
    """The requested action is not available in the current state."""


class AppealInProgressError(InvalidActionError):
    pass
