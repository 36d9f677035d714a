"""Browsing cursors, comment threads and optimistic social state."""
