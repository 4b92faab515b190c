"""JuryBox: multi-judge evaluation with discussion rounds and consensus."""

__version__ = "0.1.0"
