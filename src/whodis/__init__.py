"""whodis: SIG(0)-authenticated dynamic DNS address updates."""

__version__ = "0.3.0"
