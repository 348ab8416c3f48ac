"""
DirectoryVerify - Provider Directory Validation & Reconciliation Engine

Scores the data quality of provider directory records and reconciles
providers listed in several independently maintained directories
(web, mobile, print) into one canonical record.
"""

__version__ = "1.0.0"
__author__ = "DirectoryVerify Team"
