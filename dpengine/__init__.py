"""
dpengine: data-protection compliance policy engine.

Registers data subjects, consents and processing activities, evaluates
processing against regulatory rule sets, keeps an append-only audit trail
and fulfils data-subject rights (portability export, erasure).
"""

__version__ = "0.1.0"
