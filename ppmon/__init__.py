"""Process monitor client: wire protocol, the ppm command, event scheduler and rotating service logs."""

__version__ = "1.3.0"