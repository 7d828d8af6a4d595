"""Role permission helper sets."""

from brokerage.db.enums.auth import Role

# Roles whose scope is every client
GLOBAL_SCOPE_ROLES = frozenset(
    {
        Role.SUPER_ADMIN,
        Role.CLAIMS_EMPLOYEE,
        Role.OPERATIONS_EMPLOYEE,
        Role.ADMIN_EMPLOYEE,
        Role.AGENT,
    }
)

# Roles restricted to granted clients (or to themselves without grants)
SCOPED_ROLES = frozenset({Role.CLIENT_ADMIN, Role.AFFILIATE})

# Broker staff
BROKER_EMPLOYEES = frozenset(
    {
        Role.SUPER_ADMIN,
        Role.CLAIMS_EMPLOYEE,
        Role.OPERATIONS_EMPLOYEE,
        Role.ADMIN_EMPLOYEE,
    }
)

# Roles that can invite employees and agents
ROLES_CAN_INVITE_EMPLOYEES = frozenset({Role.SUPER_ADMIN, Role.ADMIN_EMPLOYEE})

# Roles that can invite affiliates (CLIENT_ADMIN only within its grants)
ROLES_CAN_INVITE_AFFILIATES = BROKER_EMPLOYEES | {Role.CLIENT_ADMIN}

# Roles that can change roles, client grants and deactivate principals
ROLES_CAN_MANAGE_ACCESS = frozenset({Role.SUPER_ADMIN, Role.ADMIN_EMPLOYEE})

# Roles granted by each invitation type
EMPLOYEE_ROLES = frozenset(
    {
        Role.SUPER_ADMIN,
        Role.CLAIMS_EMPLOYEE,
        Role.OPERATIONS_EMPLOYEE,
        Role.ADMIN_EMPLOYEE,
    }
)
AGENT_ROLES = frozenset({Role.AGENT})
AFFILIATE_ROLES = frozenset({Role.CLIENT_ADMIN, Role.AFFILIATE})
