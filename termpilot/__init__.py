"""termpilot: scripted automation and verification of terminal programs."""

__version__ = "0.1.0"
