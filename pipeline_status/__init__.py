"""Pull request CI pipeline status synthesizer."""

__version__ = "0.1.0"
