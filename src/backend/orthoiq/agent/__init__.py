"""
Consultation orchestration: specialist agents, background tasks and the
error taxonomy.

Files in this package may import from:
  - orthoiq.models.*, orthoiq.services.*, orthoiq.storage.*, orthoiq.tools.*
  - standard library / third-party packages
"""
