"""
Role-based permission matrix for SiPatrol.
Security officers file reports for their unit; administrators review everything.
"""
from ..models.profile import UserRole

# Permission constants
PERM_SUBMIT_REPORTS = "submit_reports"
PERM_VIEW_OWN_REPORTS = "view_own_reports"
PERM_VIEW_ALL_REPORTS = "view_all_reports"

# Role permission matrix
ROLE_PERMISSIONS: dict = {
    UserRole.SECURITY: {
        PERM_SUBMIT_REPORTS,
        PERM_VIEW_OWN_REPORTS,
    },
    UserRole.ADMIN: {
        PERM_VIEW_OWN_REPORTS,
        PERM_VIEW_ALL_REPORTS,
        # Admins do NOT file patrol reports
    },
}


def has_permission(role: str, permission: str) -> bool:
    """Check if a role has a specific permission."""
    return permission in ROLE_PERMISSIONS.get(role, set())
