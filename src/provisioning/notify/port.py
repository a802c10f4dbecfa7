"""Notifier port: customer delivery messages and operator alerts.

Notifications are best-effort. Callers go through
``provisioning.notify.delivery``, which swallows and logs adapter errors.
"""

from abc import ABC, abstractmethod


class NotifierPort(ABC):
    @abstractmethod
    def send_esim_delivery(self, order) -> None:
        """Send the installation details of a completed order to its customer."""
        ...

    @abstractmethod
    def send_alert(self, title: str, message: str, fields: dict | None = None) -> None:
        """Alert operators about an order that needs attention."""
        ...
