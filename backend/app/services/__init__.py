"""Services module - application wiring."""

from .container import Services, build_services, get_services, fresh_resolver

__all__ = ['Services', 'build_services', 'get_services', 'fresh_resolver']
