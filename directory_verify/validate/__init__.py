"""
Record validation for DirectoryVerify.

Applies per-field format and completeness rules to provider records and
turns the resulting deductions into a bounded confidence score.
"""
