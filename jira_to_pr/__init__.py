from jira_to_pr.identity import __version__

__all__ = ["__version__"]
