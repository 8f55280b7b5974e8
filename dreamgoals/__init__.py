"""Weekly/monthly/deadline goal consistency & scoring engine"""

__version__ = "0.1.0"
