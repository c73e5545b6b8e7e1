"""AceAI study service: spaced-repetition review deck."""

__version__ = '1.0.0'
