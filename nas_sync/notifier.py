"""
Email notification through the system mail command.

Notification is best effort: any failure is logged and reported back
as False, never raised.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


class MailNotifier:
    """Sends a subject/body pair with `mail -s <subject> <recipient>`."""

    def __init__(self, recipient: str, command: str = "mail", timeout: float = 60.0):
        self.recipient = recipient
        self.command = command
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.recipient)

    def send(self, subject: str, body: str) -> bool:
        """
        Send one notification.

        Returns:
            True if the mail command accepted the message.
        """
        if not self.enabled:
            logger.debug("No NOTIFICATION_EMAIL configured; not sending %r", subject)
            return False

        if shutil.which(self.command) is None:
            logger.warning("'%s' command not found; notification %r not sent", self.command, subject)
            return False

        try:
            subprocess.run(
                [self.command, "-s", subject, self.recipient],
                input=body,
                text=True,
                capture_output=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            logger.warning("Failed to send notification (exit code %d): %s", e.returncode, (e.stderr or "").strip())
            return False
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning("Failed to send notification: %s", e)
            return False

        logger.info("Notification sent to %s", self.recipient)
        return True
