"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one area of work per permission)
- Roles come from the user profile; there are no per-user overrides
- Default role mappings follow principle of least privilege
- Admin has all permissions
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    ACCOUNTING = "ACCOUNTING"
    CONTENT = "CONTENT"
    USERS = "USERS"
    STUDY = "STUDY"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    (
        "VIEW_ACCOUNTS",
        "View Accounts",
        "View accounts, balances, transaction history and liquidity",
        PermissionCategory.ACCOUNTING
    ),
    (
        "MANAGE_ACCOUNTS",
        "Manage Accounts",
        "Create and delete accounts, record transactions, receivables and transfers",
        PermissionCategory.ACCOUNTING
    ),
    (
        "MANAGE_CONTENT",
        "Manage Content",
        "Create and edit courses, topics, flashcards and questions; review flags",
        PermissionCategory.CONTENT
    ),
    (
        "MANAGE_USERS",
        "Manage Users",
        "List users and change their roles",
        PermissionCategory.USERS
    ),
    (
        "STUDY",
        "Study",
        "Enroll, review flashcards, take quizzes and flag content",
        PermissionCategory.STUDY
    ),
]

ALL_PERMISSIONS = [code for code, _, _, _ in PERMISSION_DEFINITIONS]


# =============================================================================
# ROLES
# =============================================================================

ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"
ROLE_CREATOR = "creator"
ROLE_ACCOUNTANT = "accountant"

VALID_ROLES = [ROLE_STUDENT, ROLE_ADMIN, ROLE_CREATOR, ROLE_ACCOUNTANT]

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    ROLE_ACCOUNTANT: ["VIEW_ACCOUNTS", "MANAGE_ACCOUNTS", "STUDY"],
    ROLE_CREATOR: ["MANAGE_CONTENT", "STUDY"],
    ROLE_STUDENT: ["STUDY"],
}


def get_role_permissions(role: str) -> set[str]:
    return set(DEFAULT_ROLE_PERMISSIONS.get(role, []))


def role_has_permission(role: str, permission_code: str) -> bool:
    return permission_code in get_role_permissions(role)
