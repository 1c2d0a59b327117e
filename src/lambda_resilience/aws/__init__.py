"""
AWS service integrations.

Clients are created once per execution environment and shared, see ``clients``.
"""
