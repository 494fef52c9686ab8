"""Core reconciliation logic, independent of the HTTP layer.

Module Structure:
    - supabase/              : Provider admin API and profile store clients
    - authorization.py       : Shared-secret / role-checked caller gate
    - provisioning_service.py: Identity provisioner and create-user saga
    - password_reset.py      : Two-phase password reset (prepare, execute)
    - sync_audit.py          : Profile/identity drift detection and repair
    - audit.py               : Signed administrative operation log
    - errors.py              : Error taxonomy rendered by the API
    - registry.py            : Wiring of the services from AppConfig

Import explicitly when needed:
    from fleet_identity.core.provisioning_service import IdentityProvisioner
    from fleet_identity.core.errors import ReconciliationError
"""
