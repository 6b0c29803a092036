"""chatkeeper - keeps one automated chat session alive across restarts."""

__version__ = "0.1.0"
