"""
Role management feature module.

Role catalogue, the role assignment store (user, role, organization-or-global) and
the audit trail of grants and revocations.
"""
