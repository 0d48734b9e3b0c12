"""Family event approvals: proposals over SMS and email, reply handling and the event lifecycle."""
