"""
CockroachNET - Distributed System Network Testing Tool

Entry point for running as a module:
    python -m cockroachnet --nodes <ip1,ip2>
"""

from .cli import main

if __name__ == '__main__':
    main()
