"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Principal roles.

    Global-scope roles see every client:
    - SUPER_ADMIN: Platform owner (role management, all invitations)
    - CLAIMS_EMPLOYEE: Claims desk (claim review and decisions)
    - OPERATIONS_EMPLOYEE: Operations desk (tickets, policies)
    - ADMIN_EMPLOYEE: Back office admin (invitations, client access)
    - AGENT: Broker agent

    Scoped roles see only granted clients (or only themselves):
    - CLIENT_ADMIN: HR/benefits contact at a client
    - AFFILIATE: Insured person
    """

    SUPER_ADMIN = "super_admin"
    CLAIMS_EMPLOYEE = "claims_employee"
    OPERATIONS_EMPLOYEE = "operations_employee"
    ADMIN_EMPLOYEE = "admin_employee"
    AGENT = "agent"
    CLIENT_ADMIN = "client_admin"
    AFFILIATE = "affiliate"
