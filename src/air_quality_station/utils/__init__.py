from .mocks import FakeSDS011

__all__ = ["FakeSDS011"]
