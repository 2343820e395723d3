"""ClawGate: setup wizard and reverse proxy in front of the OpenClaw gateway."""

__version__ = "1.0.0"
