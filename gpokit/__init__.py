"""
gpokit: Group Policy backup, generalization and archive tool.

Backs up GPOs that changed since their last backup, rewrites domain specific
identifiers into portable placeholders, packs backup sets into archives and
imports them into another domain.

Main features:
- Idempotent GPO backups driven by version numbers
- Generalize/specialize of backup XML, INF/INI and registry.pol files
- Zip archives with checksummed manifests
- GUID reconciliation on import
- HTML inventory reports
"""

__version__ = "0.4.0"
