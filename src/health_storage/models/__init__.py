"""
# Data Models Package

Pydantic models used by the storage bootstrap:

- **`storage_models`**: index and collection descriptors, seed and prune policies,
  typed change events, seeded documents (`County`, `Symptoms`, `CRules`,
  `SymptomGroup`) and startup reports.
"""
