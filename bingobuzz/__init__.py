"""BingoBuzz: sequenced reaction-sound board with resumable sessions."""

__version__ = "0.3.0"
