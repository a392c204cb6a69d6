"""shipyard: turn a repository and a deployment request into a running app."""

__version__ = "0.1.0"
