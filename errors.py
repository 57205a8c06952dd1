class ImagePasswordError(Exception):
    """Base class for failures while turning an image into a credential."""


class DecodeError(ImagePasswordError):
    """The supplied bytes are not an image we can read."""


class DimensionError(ImagePasswordError):
    """The decoded image has zero width or height."""


class ImageDecodeError(DecodeError):
    """
    Raised by verification when the supplied image cannot be normalized.

    Wraps the underlying DecodeError or DimensionError; callers report it
    as "verification failed" and never as a non-match.
    """


class GenerationError(ImagePasswordError):
    """The seed handed to the image generator is unusable."""


class UnknownProvenanceError(ValueError):
    """A stored provenance tag is neither 'uploaded' nor 'generated'."""
