"""Reminder delivery worker entrypoint.

Loads environment variables from .env automatically (project root).
"""

from remindpro.worker import main

if __name__ == "__main__":
    main()
