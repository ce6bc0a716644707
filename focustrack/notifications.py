"""Desktop notifications via ``notify-send``.

Fire-and-forget: nothing is tracked after delivery. When notifications are
disabled or ``notify-send`` is missing the message is only logged.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


class Notifier:
    """Sends title + body notifications."""

    def __init__(self, enabled: bool = True, app_name: str = "focustrack", timeout: float = 5):
        self.enabled = enabled
        self.app_name = app_name
        self.timeout = timeout
        self._binary = shutil.which("notify-send")
        if enabled and not self._binary:
            logger.warning("notify-send not found, notifications will only be logged")

    def notify(self, title: str, body: str) -> None:
        if not self.enabled or not self._binary:
            logger.info(f"Notification: {title}: {body}")
            return
        try:
            subprocess.run(
                [self._binary, "--app-name", self.app_name, title, body],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"Failed to send notification: {e}")
