"""Site Monitor Microservices Package.

This package contains the services of the website change monitor:
- notifier: Fans out change notifications to watchers over email and push messaging
- common: Small helpers shared across services
"""

__version__ = "0.1.0"
