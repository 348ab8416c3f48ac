"""
Cross-source comparison for DirectoryVerify.

Finds which comparison fields disagree between the directory listings of
one provider.
"""
