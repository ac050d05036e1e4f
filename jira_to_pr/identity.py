"""jira-to-pr identity: version and banner."""

__version__ = "0.3.0"
__codename__ = "jira-to-pr"
__tagline__ = "Tickets in. Reviewed pull requests out."

BANNER = r"""
     _ _                  _                    
    (_|_)_ __ __ _       | |_ ___       _ __  _ __
    | | | '__/ _` |_____ | __/ _ \ ___ | '_ \| '__|
    | | | | | (_| |_____|| || (_) |___|| |_) | |
   _/ |_|_|  \__,_|       \__\___/     | .__/|_|
  |__/                                 |_|
"""
