"""Django Course Allocation - booking capacity and prepaid seat entitlements."""

__version__ = "0.1.0"
