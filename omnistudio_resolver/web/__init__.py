from omnistudio_resolver.web.app import create_app

__all__ = ["create_app"]
