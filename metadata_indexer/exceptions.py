"""Exception hierarchy for the metadata indexer."""


class MetadataIndexerError(Exception):
    """Base error for everything raised by the indexer."""


class TrailerError(MetadataIndexerError):
    """Raised when no usable metadata trailer can be located."""


class InsufficientDataError(TrailerError):
    """Raised when a buffer is too short to hold the 2-byte length field."""


class TruncatedTrailerError(TrailerError):
    """Raised when the declared metadata length exceeds the preceding bytes."""


class MalformedMetadataError(MetadataIndexerError):
    """Raised when the candidate slice is not a well-formed metadata map."""


class InputDecodeError(MetadataIndexerError):
    """Raised when input text cannot be decoded into a byte buffer."""


class ConfigurationError(MetadataIndexerError):
    """Raised when settings are invalid."""
