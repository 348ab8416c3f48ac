"""
Audit logging and human review for DirectoryVerify.
"""
