"""Evolution API WhatsApp integration."""

__version__ = "0.1.0"
