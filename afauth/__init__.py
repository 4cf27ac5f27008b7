"""AF Auth - GitHub OAuth identity broker"""

__version__ = "0.1.0"
