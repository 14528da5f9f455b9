"""Ecosystem assistant API adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs input validation and fragment transport shaping.
- Delegates orchestration to the core layer.

Scope:
- Request lifecycle control for adapter concerns only.
- No direct model invocation logic is implemented in this package.
"""
