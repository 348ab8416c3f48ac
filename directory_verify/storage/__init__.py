"""
Storage collaborators for DirectoryVerify.

Plain create/read/update/list/filter persistence for provider records,
validation batches and audit entries. No transactions are assumed.
"""
