"""
Permission codes and the static role -> permission policy.

WHY: Centralized permission definitions ensure every route checks the same
table. Roles are fixed (admin, manager, operator, driver, viewer); there are
no per-user overrides.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Default role mappings follow principle of least privilege
- Admin has all permissions
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    CATALOG = "CATALOG"
    PRODUCTION = "PRODUCTION"
    ORDERS = "ORDERS"
    BILLING = "BILLING"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    ("VIEW_DATA", "View Data", "Read products, batches, orders, invoices and clients", PermissionCategory.SYSTEM),
    ("MANAGE_PRODUCTS", "Manage Products", "Create and edit product master data", PermissionCategory.CATALOG),
    ("ADJUST_STOCK", "Adjust Stock", "Manual stock add / subtract / set", PermissionCategory.CATALOG),
    ("MANAGE_CLIENTS", "Manage Clients", "Create and edit clients", PermissionCategory.ORDERS),
    ("MANAGE_BATCHES", "Manage Batches", "Create batches and drive their lifecycle", PermissionCategory.PRODUCTION),
    ("CREATE_ORDER", "Create Order", "Create orders (reserves stock)", PermissionCategory.ORDERS),
    ("EDIT_ORDER", "Edit Order", "Edit delivery details of an open order", PermissionCategory.ORDERS),
    ("UPDATE_ORDER_STATUS", "Update Order Status", "Advance order delivery status", PermissionCategory.ORDERS),
    ("ASSIGN_DRIVER", "Assign Driver", "Assign a driver to an order", PermissionCategory.ORDERS),
    ("CANCEL_ORDER", "Cancel Order", "Cancel an order (releases stock)", PermissionCategory.ORDERS),
    ("MANAGE_INVOICES", "Manage Invoices", "Create, send and record payment of invoices", PermissionCategory.BILLING),
    ("CANCEL_INVOICE", "Cancel Invoice", "Cancel an unpaid invoice", PermissionCategory.BILLING),
    ("REBUILD_COUNTERS", "Rebuild Counters", "Recompute cached client counters", PermissionCategory.SYSTEM),
]


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

# WHY these mappings:
# - ADMIN: everything, including counter repair
# - MANAGER: commercial operations (orders, invoices, clients, catalog)
# - OPERATOR: production floor (batches, stock corrections, status updates)
# - DRIVER: delivery status updates only
# - VIEWER: read-only

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],

    "manager": [
        "VIEW_DATA",
        "MANAGE_PRODUCTS",
        "ADJUST_STOCK",
        "MANAGE_CLIENTS",
        "MANAGE_BATCHES",
        "CREATE_ORDER",
        "EDIT_ORDER",
        "UPDATE_ORDER_STATUS",
        "ASSIGN_DRIVER",
        "CANCEL_ORDER",
        "MANAGE_INVOICES",
        "CANCEL_INVOICE",
    ],

    "operator": [
        "VIEW_DATA",
        "ADJUST_STOCK",
        "MANAGE_BATCHES",
        "UPDATE_ORDER_STATUS",
    ],

    "driver": [
        "VIEW_DATA",
        "UPDATE_ORDER_STATUS",
    ],

    "viewer": [
        "VIEW_DATA",
    ],
}


# =============================================================================
# PERMISSION HELPERS
# =============================================================================

def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


def role_has_permission(role: str, permission_code: str) -> bool:
    return permission_code in DEFAULT_ROLE_PERMISSIONS.get(role, ())
