"""saasguard: third-party application access governance.

Discovers SaaS applications through identity providers, flags Shadow IT,
scores OAuth permission risk, and automates access revocation on offboarding.
"""

__version__ = "0.1.0"
__author__ = "SaaSGuard Team"
