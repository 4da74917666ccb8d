"""cyberbot - chat bot host with a hot-reloadable plugin runtime."""

__version__ = "0.3.0"
__logo__ = "🤖"
