"""
Directory export and reporting for DirectoryVerify.
"""
