"""
NAS Sync

Scheduled, lock-guarded backup of GitHub repositories and Paymo data
into a local archive on a NAS.
"""

__version__ = "1.0.0"
__author__ = "Emerson M."
