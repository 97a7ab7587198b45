"""Risk-gated cloud security remediation engine."""

__version__ = "0.1.0"
