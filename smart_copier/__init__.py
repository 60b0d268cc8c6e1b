"""Smart Copier — mirror stable files from source trees into destinations.

Polls each configured source folder, waits until a file has stopped
growing, and copies it exactly once to the matching destination folder.
Content fingerprints keep identical files from being transferred twice.
"""

__version__ = "1.0.0"
__app_name__ = "Smart Copier"
