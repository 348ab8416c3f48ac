"""
Optional advisory enrichment for DirectoryVerify.
"""
