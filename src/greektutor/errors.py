class GreekTutorError(Exception):
    """Base class for errors raised by the word-study engine."""


class ValidationError(GreekTutorError):
    """A request was rejected before any I/O took place."""


class NotFoundError(GreekTutorError):
    pass


class OwnershipError(GreekTutorError):
    pass


class GenerationError(GreekTutorError):
    """The generation gateway failed; the message names the word or passage."""


class StoreError(GreekTutorError):
    pass


def describe(error: BaseException) -> str:
    return str(error) or error.__class__.__name__
