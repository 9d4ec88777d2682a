"""fieldcron: recurring Field Nation work-order requester."""

__version__ = "0.1.0"
