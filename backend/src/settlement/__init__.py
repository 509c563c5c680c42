"""Payment settlement orchestrator for gateway-captured purchases."""

__version__ = "0.1.0"
