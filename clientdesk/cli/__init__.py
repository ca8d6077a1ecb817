from clientdesk.cli.main import main

__all__ = ["main"]
