"""Mount a remote distributed filesystem through local write staging."""

__version__ = "0.1.0"
