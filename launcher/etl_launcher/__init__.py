"""
etl_launcher package
--------------------
ET:Legacy dedicated server launcher for Linux / Docker environments.
Contains modules for settings, config templating, map fetching,
multi-instance compose generation, host installation, logging,
and server process management via CLI and API.
"""

__version__ = "0.3.0"
