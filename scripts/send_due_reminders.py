"""Monthly due reminder; run from cron on the 10th, e.g.

    0 9 10 * * cd /srv/house-utility && python scripts/send_due_reminders.py
"""

import asyncio
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from house_utility.logging_config import setup_logging  # noqa: E402
from house_utility.notifications import get_notifier  # noqa: E402


def main() -> int:
    setup_logging()
    notifier = get_notifier()
    if notifier is None:
        print("TELEGRAM_BOT_TOKEN is not set; nothing to send")
        return 1
    sent = asyncio.run(notifier.send_monthly_due_reminders())
    print(f"sent {sent} reminder(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
