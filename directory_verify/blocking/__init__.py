"""
Identity blocking for DirectoryVerify.

Groups records from different directory sources that describe the same
provider, using a deterministic identity key.
"""
