"""Core exception types shared across services and blueprints."""
