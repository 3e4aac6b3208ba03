"""AutoFlow: commit generated CI workflows, their variables and secrets to GitHub."""

__version__ = "0.1.0"
