"""
torrent-console - interactive operator console for a BitTorrent engine

Drives the engine through asynchronous commands, consumes its notification
stream, renders live status to a character terminal and keeps per-job
recovery (resume) data on disk.
"""

__version__ = "0.3.0"
__author__ = "jbruns"
