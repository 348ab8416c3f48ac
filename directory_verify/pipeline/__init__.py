"""
Batch validation pipeline for DirectoryVerify.
"""
