from apps.api.main import (create_app, lifespan, main, wire_services,)

__all__ = ['create_app', 'lifespan', 'main', 'wire_services']
