"""Request middleware: logging, timing, JWT context, RBAC and rate limits."""
