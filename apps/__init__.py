from apps import api

__all__ = ['api']
