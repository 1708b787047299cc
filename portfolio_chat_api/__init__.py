"""Portfolio Chat API: quota-gated chat sessions and job fit scoring."""

__version__ = "0.1.0"
