"""miniagent -- a streaming, multi-provider tool-using agent."""

__version__ = "0.1.0"
