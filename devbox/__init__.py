"""devbox — idempotent workstation provisioning."""

__version__ = "0.1.0"
