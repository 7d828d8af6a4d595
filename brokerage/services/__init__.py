"""Domain services: scoping, invitations, workflows and the audit trail."""
