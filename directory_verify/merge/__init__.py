"""
Reconciliation for DirectoryVerify.

Chooses one canonical value per disagreeing field and synthesizes cleaned
provider records with a diff report.
"""
