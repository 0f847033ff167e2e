"""
Treasury Kernel

Shared foundation for the smart payment engine:
- Fixed-scale money value objects
- Typed exception hierarchy
- Structured JSON logging
- SQLAlchemy base, engine and immutability listeners
- Injectable clock
"""

__version__ = "0.1.0"
