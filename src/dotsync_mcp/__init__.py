"""dotsync-mcp: reconcile local config files with a dotfiles repository."""

__version__ = "0.1.0"
