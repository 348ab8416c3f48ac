"""
Row ingestion for DirectoryVerify.
"""
