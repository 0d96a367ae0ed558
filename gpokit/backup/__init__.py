"""
GPO backup sets: folder metadata, idempotent backups, archives and imports.
"""
