#! /usr/bin/env python3

####################################################################################################
#
# outlinectl - A CLI for Outline
# Copyright (C) 2025 Fabrice SALVAIRE
# SPDX-License-Identifier: GPL-3.0-or-later
#
####################################################################################################

__all__ = ['main']

####################################################################################################

import signal
import sys

from OutlineTools.Cli import Cli

####################################################################################################

def _on_sigterm(signum, frame):
    raise KeyboardInterrupt

####################################################################################################

def main():
    # SIGTERM cancels like Ctrl+C
    signal.signal(signal.SIGTERM, _on_sigterm)
    cli = Cli()
    sys.exit(cli.run(sys.argv[1:]))

####################################################################################################

if __name__ == '__main__':
    main()
