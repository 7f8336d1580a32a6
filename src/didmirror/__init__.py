"""
didmirror — encrypted mirrors of plaintext directories.

Every plaintext file gets a ciphertext twin whose name is a keyed hash
and whose content travels in an authenticated envelope addressed from
one DID to another. Drop the ciphertext side into any sync folder.
"""

import os

__version__ = "0.1.0"
__author__ = "didmirror contributors"

MIRROR_HOME = os.environ.get("DIDMIRROR_HOME", "~/.didmirror")
