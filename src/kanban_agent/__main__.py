"""Entry point for the kanban-agent package."""

import sys

from kanban_agent.main import main

if __name__ == "__main__":
    sys.exit(main())
