#!/usr/bin/env python3
"""
ET:Legacy dedicated server container entrypoint.

``docker run oksii/etlegacy [etlded args...]`` ends up here: pull the
config repository, fetch maps, render etl_server.cfg and exec etlded.
Any other first argument is treated as an etl-launcher subcommand.
"""

import sys

from etl_launcher.cli import main

SUBCOMMANDS = {"run", "plan", "api", "autorestart", "install", "-h", "--help"}


def entrypoint(argv):
    if argv and argv[0] in SUBCOMMANDS:
        return main(argv)
    # everything else goes to etlded untouched, even tokens that look like options
    return main(["run", "--", *argv])


if __name__ == "__main__":
    sys.exit(entrypoint(sys.argv[1:]))
