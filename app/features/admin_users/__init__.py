"""
Admin user management feature module.

Creates and updates users together with their role assignments, keeping
organization-scoped admin grants within the grantor's own scope.
"""
