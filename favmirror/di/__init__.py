from favmirror.di.container import Container

__all__ = ["Container"]
