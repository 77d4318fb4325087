"""Domain Services.

This package contains the compact record codec and the derived-vitals
helpers. All services are pure functions without infrastructure dependencies.
"""
