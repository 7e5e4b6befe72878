"""planpoker - Planning Poker estimation engine."""

__version__ = "0.3.0"
