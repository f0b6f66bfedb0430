"""Interactive step-script walkthroughs."""

__version__ = "0.1.0"
