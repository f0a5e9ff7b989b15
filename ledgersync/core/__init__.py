"""
Core infrastructure shared by the LedgerSync services: configuration,
logging, errors, domain values and collaborator contracts.
"""
