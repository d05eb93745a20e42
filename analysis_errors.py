"""Error types raised by the analysis pipeline."""


class ConfigurationError(ValueError):
    """Invalid engine or mapper configuration, surfaced once at configure time."""


class InvalidFrame(ValueError):
    """Magnitude frame with the wrong length or non-finite values."""
