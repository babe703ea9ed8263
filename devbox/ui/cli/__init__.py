"""Terminal presentation for the devbox CLI."""
