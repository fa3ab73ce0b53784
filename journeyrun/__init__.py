"""journeyrun - branching learning-journey execution engine."""

__version__ = "0.1.0"
