"""Content blocker: hide tagged prompt content from the model, not the user."""

__version__ = "1.0.0"
