"""Model of tasks, resources and async operations built from runtime instrumentation updates."""

__version__ = "0.1.0"